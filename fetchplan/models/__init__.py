"""Data models: configuration dataclasses and resource/cache structures."""

from fetchplan.models.config import FetchPlanConfig, Hooks
from fetchplan.models.resources import (
    CacheRecord,
    EntityKind,
    LoadingState,
    RefetchScope,
    ResourceDescriptor,
    ResourceSlot,
    ResourceType,
)

__all__ = [
    "CacheRecord",
    "EntityKind",
    "FetchPlanConfig",
    "Hooks",
    "LoadingState",
    "RefetchScope",
    "ResourceDescriptor",
    "ResourceSlot",
    "ResourceType",
]
