"""fetchplan: a shared, reference-counted resource cache with declarative fetch orchestration."""

from fetchplan.app import FetchPlanApp
from fetchplan.cache.store import ResourceStore
from fetchplan.entities import HttpTransport, Record, RecordList
from fetchplan.errors import FetchPlanError, TransportError
from fetchplan.fetch import FetchResult, Prefetcher, RequestCoordinator
from fetchplan.models.resources import EntityKind, LoadingState, RefetchScope, ResourceDescriptor
from fetchplan.orchestrator import ConsumerView, ResourceConsumer, ResourceRegistry

__version__ = "0.1.0"

__all__ = [
    "ConsumerView",
    "EntityKind",
    "FetchPlanApp",
    "FetchPlanError",
    "FetchResult",
    "HttpTransport",
    "LoadingState",
    "Prefetcher",
    "Record",
    "RecordList",
    "RefetchScope",
    "RequestCoordinator",
    "ResourceConsumer",
    "ResourceDescriptor",
    "ResourceRegistry",
    "ResourceStore",
    "TransportError",
    "__version__",
]
