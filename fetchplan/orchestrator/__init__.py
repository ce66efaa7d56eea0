"""Fetch orchestration.

Sub-modules:
  consumer -- ResourceConsumer state machine and ConsumerView
  registry -- ResourceRegistry of resource types
  states   -- aggregate has_loaded / is_loading / has_errored helpers
"""

from fetchplan.orchestrator.consumer import ConsumerView, ResourceConsumer
from fetchplan.orchestrator.registry import ResourceRegistry

__all__ = ["ConsumerView", "ResourceConsumer", "ResourceRegistry"]
