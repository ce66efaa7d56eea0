"""Single-record entity."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar
from urllib.parse import quote

from fetchplan.entities.base import Entity
from fetchplan.entities.transport import Transport
from fetchplan.models.resources import EntityKind

_MISSING = object()


class Record(Entity):
    """A single server-side record held as an attribute mapping."""

    kind = EntityKind.RECORD
    id_attribute: ClassVar[str] = "id"
    defaults: ClassVar[Mapping[str, Any]] = {}

    def __init__(
        self,
        attributes: Mapping[str, Any] | None = None,
        *,
        transport: Transport | None = None,
        parse: bool = False,
        **url_options: Any,
    ) -> None:
        super().__init__(transport=transport, **url_options)
        self.attributes: dict[str, Any] = {}
        if parse:
            attributes = self.parse(attributes)
        self.set({**self.defaults, **(attributes or {})}, silent=True)

    @property
    def id(self) -> Any:
        return self.attributes.get(self.id_attribute)

    def get(self, attr: str, default: Any = None) -> Any:
        return self.attributes.get(attr, default)

    def has(self, attr: str) -> bool:
        return self.attributes.get(attr) is not None

    def pick(self, *attrs: str) -> dict[str, Any]:
        return {attr: self.attributes[attr] for attr in attrs if self.has(attr)}

    def is_new(self) -> bool:
        return not self.has(self.id_attribute)

    def set(self, attrs: Mapping[str, Any], *, silent: bool = False, unset: bool = False) -> Record:
        """Update (or with ``unset`` delete) attributes; notify listeners on change."""
        changed = False
        for attr, value in attrs.items():
            if unset:
                if attr in self.attributes:
                    del self.attributes[attr]
                    changed = True
            elif self.attributes.get(attr, _MISSING) != value:
                self.attributes[attr] = value
                changed = True
        if changed and not silent:
            self.trigger_update()
        return self

    def unset(self, attr: str, *, silent: bool = False) -> Record:
        return self.set({attr: None}, silent=silent, unset=True)

    def clear(self, *, silent: bool = False) -> Record:
        return self.set(dict.fromkeys(self.attributes), silent=silent, unset=True)

    def to_json(self) -> dict[str, Any]:
        return dict(self.attributes)

    def url(self) -> str:
        # path fields arrive as url options before the first fetch sets attributes
        record_id = self.id if self.id is not None else self.url_options.get(self.id_attribute)
        if self.url_template or not self.url_root or record_id is None:
            return super().url()
        return f"{self.url_root.rstrip('/')}/{quote(str(record_id), safe='')}"

    def _url_fields(self) -> dict[str, Any]:
        return {"id": self.id, **self.url_options}

    def _apply(self, payload: Any) -> None:
        if isinstance(payload, Mapping):
            self.set(payload, silent=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"
