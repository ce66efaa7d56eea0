"""Shared behaviour of records and record lists."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from typing import Any, ClassVar

from fetchplan.entities.events import ListenerRegistry
from fetchplan.entities.transport import Transport
from fetchplan.errors import FetchPlanError, MissingURLError
from fetchplan.models.resources import EntityKind


class Entity:
    """Base class for server-backed entities.

    Subclasses set ``url_root`` (a collection endpoint, the record id is
    appended) or ``url_template`` (formatted with the url options and ``id``).
    Constructor keyword arguments other than ``transport`` become url options.
    """

    kind: ClassVar[EntityKind]
    url_root: ClassVar[str | None] = None
    url_template: ClassVar[str | None] = None

    def __init__(self, *, transport: Transport | None = None, **url_options: Any) -> None:
        self.url_options: dict[str, Any] = url_options
        self.transport = transport
        self.listeners = ListenerRegistry()
        # placeholder handed to consumers before a resource has loaded
        self.is_empty = False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, token: Hashable, callback: Callable[[], None]) -> None:
        self.listeners.subscribe(token, callback)

    def unsubscribe(self, token: Hashable) -> None:
        self.listeners.unsubscribe(token)

    def trigger_update(self) -> None:
        self.listeners.trigger()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def url(self) -> str:
        if self.url_template:
            try:
                return self.url_template.format_map(self._url_fields())
            except KeyError as exc:
                raise FetchPlanError(
                    f"url_template of {type(self).__name__} needs {exc.args[0]!r}"
                ) from exc
        if self.url_root:
            return self.url_root
        raise MissingURLError(self)

    def _url_fields(self) -> dict[str, Any]:
        return dict(self.url_options)

    async def fetch(self, params: Mapping[str, Any] | None = None) -> tuple[Any, int]:
        """GET this entity's url and replace its contents with the parsed body.

        Returns ``(self, status_code)``; listeners are notified once.
        """
        if self.transport is None:
            raise FetchPlanError(f"{type(self).__name__} has no transport to fetch with")
        body, response = await self.transport.request(
            self.url(),
            {"method": "GET", "params": dict(params or {})},
        )
        self._apply(self.parse(body))
        self.trigger_update()
        return self, response.status_code

    def parse(self, body: Any) -> Any:
        """Transform a response body before it is applied. Identity by default."""
        return body

    def _apply(self, payload: Any) -> None:
        raise NotImplementedError

    def to_json(self) -> Any:
        raise NotImplementedError
