"""Request coordinator: at most one in-flight fetch per cache key.

``request()`` is deliberately a plain (non-async) method. The in-flight
check, the cache check and the reservation of a new fetch all run in the
caller's turn of the event loop before anything can suspend, so two callers
asking for the same key in the same turn can never both take the miss
branch. No lock is involved; porting this to threads would need one around
the body of ``request()``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

from fetchplan.cache.store import ResourceStore
from fetchplan.errors import TransportError
from fetchplan.observability.metrics import (
    fetch_duration_seconds,
    fetches_total,
    inflight_requests,
    resource_type_of,
)

_log = structlog.get_logger(component="fetch.coordinator")


class FetchResult(NamedTuple):
    """Settled value of a coordinator request. ``status`` is None for cache hits."""

    entity: Any
    status: int | None = None


@dataclass
class InFlightRequest:
    """A fetch between start and settlement."""

    key: str
    future: asyncio.Future[FetchResult]
    waiters: int = 1


class RequestCoordinator:
    """Deduplicates concurrent fetches and writes settled entities to the store."""

    def __init__(self, store: ResourceStore) -> None:
        self._store = store
        self._in_flight: dict[str, InFlightRequest] = {}

    @property
    def store(self) -> ResourceStore:
        return self._store

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def in_flight(self) -> dict[str, int]:
        """Map of in-flight keys to their waiter counts."""
        return {key: entry.waiters for key, entry in self._in_flight.items()}

    def is_fresh(self, key: str) -> bool:
        """True if *key* is cached, not lazy and not currently being fetched."""
        record = self._store.get_record(key)
        return record is not None and not record.lazy and key not in self._in_flight

    def request(
        self,
        key: str,
        factory: Callable[[], Any],
        *,
        token: Hashable | None = None,
        params: Mapping[str, Any] | None = None,
        force: bool = False,
        lazy: bool = False,
        fetch: bool = True,
        grace_period_ms: int | None = None,
    ) -> asyncio.Future[FetchResult]:
        """Return a future settling with the entity for *key*.

        Args:
            key:             Cache key of the resource.
            factory:         Builds a fresh entity on a cache miss.
            token:           Consumer token registered for the key.
            params:          Query params for the fetch.
            force:           Fetch even if a fresh record is cached.
            lazy:            Cache the factory result without fetching; a later
                             non-lazy request promotes it to a real fetch.
            fetch:           False caches the entity without any network call.
            grace_period_ms: Per-type eviction grace period override.
        """
        # join an in-flight fetch
        existing = self._in_flight.get(key)
        if existing is not None:
            self._store.register(key, token)
            existing.waiters += 1
            return existing.future

        record = self._store.get_record(key)

        # cache hit: fresh record, or a lazy record asked for lazily again
        if record is not None and not force and (not record.lazy or lazy or not fetch):
            self._store.register(key, token)
            return _resolved(FetchResult(record.value))

        entity = record.value if record is not None else factory()

        # lazy or no-fetch: cache without a network request
        if lazy or not fetch:
            self._store.put(key, entity, token, lazy=lazy, grace_period_ms=grace_period_ms)
            return _resolved(FetchResult(entity))

        # reserve the key before the first suspension point
        self._store.put(
            key,
            entity,
            token,
            lazy=record.lazy if record is not None else False,
            grace_period_ms=grace_period_ms,
        )
        task = asyncio.get_running_loop().create_task(
            self._fetch(key, entity, dict(params or {}), grace_period_ms),
            name=f"fetch:{key}",
        )
        task.add_done_callback(_consume_exception)
        self._in_flight[key] = InFlightRequest(key=key, future=task)
        inflight_requests.set(len(self._in_flight))
        _log.debug("fetch_started", key=key, forced=force, promoted=bool(record and record.lazy))
        return task

    async def _fetch(
        self,
        key: str,
        entity: Any,
        params: dict[str, Any],
        grace_period_ms: int | None,
    ) -> FetchResult:
        resource_type = resource_type_of(key)
        started = time.monotonic()
        try:
            fetched, status = await entity.fetch(params=params)
        except Exception as exc:
            # failed fetches are never cached
            self._settle(key)
            self._store.remove(key)
            fetches_total.labels(resource_type=resource_type, outcome="error").inc()
            _log.info(
                "fetch_failed",
                key=key,
                status=exc.status if isinstance(exc, TransportError) else None,
                error=str(exc),
            )
            raise
        except asyncio.CancelledError:
            self._settle(key)
            raise

        # success: store the settled entity and clear the lazy flag
        self._settle(key)
        self._store.put(key, fetched, lazy=False, grace_period_ms=grace_period_ms)
        duration = time.monotonic() - started
        fetches_total.labels(resource_type=resource_type, outcome="success").inc()
        fetch_duration_seconds.labels(resource_type=resource_type).observe(duration)
        _log.debug("fetch_succeeded", key=key, status=status, duration_ms=round(duration * 1000, 1))
        return FetchResult(fetched, status)

    def _settle(self, key: str) -> None:
        self._in_flight.pop(key, None)
        self._store.clear_refetching(key)
        inflight_requests.set(len(self._in_flight))

    def reset(self) -> None:
        """Forget in-flight requests without cancelling them."""
        self._in_flight.clear()
        inflight_requests.set(0)


def _resolved(result: FetchResult) -> asyncio.Future[FetchResult]:
    future: asyncio.Future[FetchResult] = asyncio.get_running_loop().create_future()
    future.set_result(result)
    return future


def _consume_exception(task: asyncio.Future[FetchResult]) -> None:
    # Waiters re-raise the failure themselves; this only keeps asyncio from
    # reporting it as never retrieved when nobody awaited the fetch.
    if not task.cancelled():
        task.exception()
