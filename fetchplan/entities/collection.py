"""List-of-records entity."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any, ClassVar

from fetchplan.entities.base import Entity
from fetchplan.entities.record import Record
from fetchplan.entities.transport import Transport
from fetchplan.models.resources import EntityKind


class RecordList(Entity):
    """An ordered list of records fetched from one endpoint.

    Items are instances of ``record_class``. A fetch replaces the whole list;
    reconciling individual items against the server is left to the records.
    """

    kind = EntityKind.LIST
    record_class: ClassVar[type[Record]] = Record

    def __init__(
        self,
        items: Iterable[Mapping[str, Any] | Record] | None = None,
        *,
        transport: Transport | None = None,
        parse: bool = False,
        **url_options: Any,
    ) -> None:
        super().__init__(transport=transport, **url_options)
        self.records: list[Record] = []
        self._by_id: dict[Any, Record] = {}
        if items is not None:
            self.reset(self.parse(items) if parse else items, silent=True)

    def _prepare(self, item: Mapping[str, Any] | Record) -> Record:
        if isinstance(item, Record):
            return item
        return self.record_class(item, transport=self.transport)

    def add(self, items: Iterable[Mapping[str, Any] | Record], *, silent: bool = False) -> RecordList:
        """Append new records; items whose id is already present update that record."""
        changed = False
        for item in items:
            record = self._prepare(item)
            existing = self._by_id.get(record.id) if record.id is not None else None
            if existing is not None:
                existing.set(record.attributes, silent=True)
            else:
                self.records.append(record)
                if record.id is not None:
                    self._by_id[record.id] = record
            changed = True
        if changed and not silent:
            self.trigger_update()
        return self

    def reset(self, items: Iterable[Mapping[str, Any] | Record] = (), *, silent: bool = False) -> RecordList:
        self.records = []
        self._by_id = {}
        self.add(items, silent=True)
        if not silent:
            self.trigger_update()
        return self

    def get(self, record_id: Any) -> Record | None:
        return self._by_id.get(record_id)

    def to_json(self) -> list[dict[str, Any]]:
        return [record.to_json() for record in self.records]

    def _apply(self, payload: Any) -> None:
        if isinstance(payload, list):
            self.reset(payload, silent=True)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} len={len(self.records)}>"
