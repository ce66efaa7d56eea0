"""Resource, descriptor and cache-record data structures."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fetchplan.cache.timer import CancellableTimer


class LoadingState(StrEnum):
    """Loading state of one resource for one consumer."""

    PENDING = "pending"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class EntityKind(StrEnum):
    """Whether a resource type resolves to a single record or a list of records."""

    RECORD = "record"
    LIST = "list"


class RefetchScope(StrEnum):
    """How far a refetch requested by one consumer reaches."""

    CONSUMER = "consumer"
    SHARED = "shared"


# A dependency entry is either a field name or a function of the query params
# returning extra key/value pairs.
Dependency = str | Callable[[Mapping[str, Any]], Mapping[str, Any]]
Provides = Callable[[Any, Mapping[str, Any]], Mapping[str, Any]]


@dataclass(frozen=True)
class ResourceType:
    """Registered resource type.

    ``kind`` is the capability flag used everywhere the layer needs to know
    whether it deals with a single record or a list; nothing inspects the
    entity class hierarchy.
    """

    name: str
    entity: type
    kind: EntityKind = EntityKind.RECORD
    dependencies: tuple[Dependency, ...] = ()
    cache_timeout_ms: int | None = None
    id_attribute: str = "id"
    measure: bool | Callable[[ResourceDescriptor], bool] = False

    def should_measure(self, descriptor: ResourceDescriptor) -> bool:
        if callable(self.measure):
            return bool(self.measure(descriptor))
        return bool(self.measure)


@dataclass
class ResourceDescriptor:
    """Consumer-declared configuration for one named resource."""

    resource_type: str = ""
    path: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    provides: Provides | None = None
    noncritical: bool = False
    force: bool = False
    lazy: bool = False
    fetch: bool = True
    prefetches: tuple[Mapping[str, Any], ...] = ()
    # declared: refetch once each time this flips from False to True
    refetch: bool = False
    # set internally while expanding prefetch variants
    prefetch: bool = False

    @classmethod
    def coerce(cls, name: str, value: ResourceDescriptor | Mapping[str, Any] | None) -> ResourceDescriptor:
        """Normalize an executor value (descriptor, plain dict or None) into a descriptor."""
        if value is None:
            descriptor = cls()
        elif isinstance(value, ResourceDescriptor):
            descriptor = replace(value)
        else:
            raw = dict(value)
            raw["depends_on"] = tuple(raw.get("depends_on") or ())
            raw["prefetches"] = tuple(raw.get("prefetches") or ())
            unknown = set(raw) - set(cls.__dataclass_fields__)
            if unknown:
                raise ValueError(f"Unknown resource option(s) for {name!r}: {sorted(unknown)}")
            descriptor = cls(**raw)
        if not descriptor.resource_type:
            descriptor.resource_type = name
        return descriptor

    def missing_dependencies(self, inputs: Mapping[str, Any]) -> list[str]:
        """Return the ``depends_on`` fields absent from *inputs*."""
        return [name for name in self.depends_on if inputs.get(name) is None]

    @property
    def critical(self) -> bool:
        return not self.noncritical and not self.prefetch


@dataclass
class CacheRecord:
    """A cached entity plus its eviction timer. Owned by the ResourceStore."""

    key: str
    value: Any
    lazy: bool = False
    grace_period_ms: int | None = None
    timer: CancellableTimer | None = None


@dataclass
class ResourceSlot:
    """Per-consumer state for one resource name."""

    state: LoadingState
    key: str | None = None
    entity: Any = None
    lazy: bool = False
    descriptor: ResourceDescriptor | None = None
