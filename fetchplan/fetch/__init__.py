"""Fetch layer.

Sub-modules:
  coordinator -- RequestCoordinator: one in-flight fetch per cache key
  prefetch    -- Prefetcher: debounced, fire-once speculative requests
"""

from fetchplan.fetch.coordinator import FetchResult, RequestCoordinator
from fetchplan.fetch.prefetch import Prefetcher

__all__ = ["FetchResult", "Prefetcher", "RequestCoordinator"]
