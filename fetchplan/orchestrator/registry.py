"""Resource-type registry."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from fetchplan.entities.transport import Transport
from fetchplan.errors import UnknownResourceTypeError
from fetchplan.models.resources import Dependency, EntityKind, ResourceDescriptor, ResourceType


class ResourceRegistry:
    """Maps resource type names to their entity class and key dependencies."""

    def __init__(self, transport: Transport | None = None) -> None:
        self.transport = transport
        self._types: dict[str, ResourceType] = {}

    def register(
        self,
        name: str,
        entity: type,
        *,
        kind: EntityKind | None = None,
        dependencies: Iterable[Dependency] = (),
        cache_timeout_ms: int | None = None,
        id_attribute: str | None = None,
        measure: bool | Callable[[ResourceDescriptor], bool] = False,
    ) -> ResourceType:
        """Register (or replace) a resource type.

        ``kind`` defaults to the entity class's own ``kind`` attribute and
        ``id_attribute`` to the class's, falling back to ``"id"``.
        """
        resource_type = ResourceType(
            name=name,
            entity=entity,
            kind=kind or getattr(entity, "kind", EntityKind.RECORD),
            dependencies=tuple(dependencies),
            cache_timeout_ms=cache_timeout_ms,
            id_attribute=id_attribute or getattr(entity, "id_attribute", "id"),
            measure=measure,
        )
        self._types[name] = resource_type
        return resource_type

    def get(self, name: str) -> ResourceType:
        try:
            return self._types[name]
        except KeyError:
            raise UnknownResourceTypeError(name) from None

    def names(self) -> list[str]:
        return sorted(self._types)

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def build(
        self,
        name: str,
        data: Any = None,
        options: Mapping[str, Any] | None = None,
        transport: Transport | None = None,
    ) -> Any:
        """Instantiate the entity class of *name* with initial data and url options."""
        resource_type = self.get(name)
        return resource_type.entity(
            data or None,
            transport=transport or self.transport,
            **dict(options or {}),
        )

    def build_for(self, descriptor: ResourceDescriptor, transport: Transport | None = None) -> Any:
        """Instantiate the entity for *descriptor*; path fields become url options."""
        return self.build(
            descriptor.resource_type,
            descriptor.data,
            {**descriptor.path, **descriptor.options},
            transport,
        )

    def empty(self, name: str) -> Any:
        """Placeholder entity handed to consumers before *name* has loaded."""
        entity = self.build(name)
        entity.is_empty = True
        return entity
