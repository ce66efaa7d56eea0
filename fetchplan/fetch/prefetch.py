"""Speculative prefetching for input a consumer is expected to receive soon.

Typical use is a pointer hovering over a link: ``on_enter`` arms a short
debounce timer, ``on_leave`` disarms it, and if the timer fires every
resource the executor declares for the expected input is requested without
a consumer token. Nothing holds interest in those records, so they start
their grace period immediately and are evicted unless a consumer picks them
up in time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from functools import partial
from typing import TYPE_CHECKING, Any

import structlog

from fetchplan.cache.keys import key_for
from fetchplan.cache.timer import CancellableTimer, Scheduler
from fetchplan.errors import TransportError
from fetchplan.fetch.coordinator import FetchResult, RequestCoordinator
from fetchplan.models.config import FetchPlanConfig
from fetchplan.models.resources import ResourceDescriptor

if TYPE_CHECKING:
    from fetchplan.orchestrator.consumer import GetResources
    from fetchplan.orchestrator.registry import ResourceRegistry

_log = structlog.get_logger(component="fetch.prefetch")


class Prefetcher:
    """Fires the resources of ``get_resources(expected_props)`` at most once."""

    def __init__(
        self,
        get_resources: GetResources,
        expected_props: Mapping[str, Any] | None = None,
        *,
        coordinator: RequestCoordinator,
        registry: ResourceRegistry,
        config: FetchPlanConfig | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._registry = registry
        self._config = config or FetchPlanConfig()
        self._props = dict(expected_props or {})
        self._descriptors = [
            ResourceDescriptor.coerce(name, value)
            for name, value in (get_resources(self._props) or {}).items()
        ]
        self._timer = CancellableTimer(scheduler or coordinator.store.scheduler)
        self._tasks: set[asyncio.Task[None]] = set()
        self.fired = False

    @property
    def armed(self) -> bool:
        return self._timer.pending

    def on_enter(self) -> None:
        """Arm the debounce timer unless already armed or already fired."""
        if self.fired or self._timer.pending:
            return
        self._timer.schedule(self._config.prefetch.debounce_ms, self._fire)

    def on_leave(self) -> None:
        """Disarm a timer that has not fired yet."""
        self._timer.cancel()

    async def settle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _fire(self) -> None:
        self.fired = True
        for descriptor in self._descriptors:
            if descriptor.missing_dependencies(self._props):
                continue
            resource_type = self._registry.get(descriptor.resource_type)
            key = key_for(resource_type, descriptor, self._config.hooks.stringify)
            future = self._coordinator.request(
                key,
                partial(self._registry.build_for, descriptor),
                params=descriptor.params,
                grace_period_ms=resource_type.cache_timeout_ms,
            )
            task = asyncio.ensure_future(self._swallow(key, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _swallow(key: str, future: asyncio.Future[FetchResult]) -> None:
        try:
            await future
        except Exception as exc:
            # a consumer requesting the key later surfaces the real error
            _log.debug(
                "prefetch_failed",
                key=key,
                status=exc.status if isinstance(exc, TransportError) else None,
            )
