"""Reference-counted resource store with deferred, cancellable eviction.

Every cache key maps to at most one CacheRecord and to an interest set of
consumer tokens. A record whose interest set becomes empty is scheduled for
eviction after a grace period; registering any token for the key cancels the
pending eviction synchronously, so the timer never has to re-check interest
when it fires.

The store is a plain object: construct one per application (or per test)
and call ``reset()`` to drop everything it holds.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable
from typing import Any

import structlog

from fetchplan.cache.keys import matches_type
from fetchplan.cache.timer import CancellableTimer, LoopScheduler, Scheduler
from fetchplan.models.resources import CacheRecord
from fetchplan.observability.metrics import cached_records, evictions_total

_log = structlog.get_logger(component="cache.store")

DEFAULT_GRACE_PERIOD_MS = 120_000


class ResourceStore:
    """Key -> record map plus per-key interest sets and eviction timers."""

    def __init__(
        self,
        grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.grace_period_ms = grace_period_ms
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._records: dict[str, CacheRecord] = {}
        self._interest: dict[str, set[Hashable]] = {}
        self._refetching: set[str] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def get(self, key: str) -> Any | None:
        record = self._records.get(key)
        return record.value if record is not None else None

    def get_record(self, key: str) -> CacheRecord | None:
        return self._records.get(key)

    def keys(self) -> list[str]:
        return list(self._records)

    def interest(self, key: str) -> frozenset[Hashable]:
        return frozenset(self._interest.get(key, ()))

    def eviction_pending(self, key: str) -> bool:
        record = self._records.get(key)
        return record is not None and record.timer is not None and record.timer.pending

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(
        self,
        key: str,
        value: Any,
        token: Hashable | None = None,
        *,
        lazy: bool = False,
        grace_period_ms: int | None = None,
    ) -> None:
        """Insert or overwrite the record at *key*.

        With a *token* the token is registered. Without one, eviction is
        scheduled unless some other token already holds interest in the key
        (a prefetch settling while a consumer waits on the same key).
        """
        record = self._records.get(key)
        if record is None:
            record = CacheRecord(key=key, value=value, lazy=lazy, grace_period_ms=grace_period_ms)
            self._records[key] = record
            cached_records.set(len(self._records))
        else:
            record.value = value
            record.lazy = lazy
            if grace_period_ms is not None:
                record.grace_period_ms = grace_period_ms

        if token is not None:
            self.register(key, token)
        elif not self._interest.get(key):
            self._schedule_eviction(record)

    def register(self, key: str, token: Hashable | None) -> None:
        """Add *token* to the interest set of *key*, cancelling any pending eviction."""
        if token is None:
            return
        record = self._records.get(key)
        if record is not None and record.timer is not None and record.timer.pending:
            record.timer.cancel()
            _log.debug("eviction_cancelled", key=key)
        self._interest.setdefault(key, set()).add(token)

    def unregister(self, token: Hashable, keys: Iterable[str] | None = None) -> None:
        """Remove *token* from the given keys (default: every key).

        Keys left with no interested token are scheduled for eviction.
        """
        targets = list(self._interest) if keys is None else list(keys)
        for key in targets:
            tokens = self._interest.get(key)
            if not tokens or token not in tokens:
                continue
            tokens.discard(token)
            if not tokens:
                del self._interest[key]
                record = self._records.get(key)
                if record is not None:
                    self._schedule_eviction(record)

    def remove(self, key: str) -> None:
        """Evict *key* immediately, bypassing the grace period."""
        self._interest.pop(key, None)
        self._refetching.discard(key)
        if self._drop(key):
            evictions_total.labels(reason="explicit").inc()
            _log.debug("record_evicted", key=key, reason="explicit")

    def remove_all_matching(self, resource_type: str) -> list[str]:
        """Evict every key of *resource_type*. Returns the evicted keys."""
        removed = [key for key in self._records if matches_type(key, resource_type)]
        for key in removed:
            self.remove(key)
        return removed

    def remove_all_except(self, resource_types: Iterable[str]) -> list[str]:
        """Evict every key not belonging to one of *resource_types*."""
        keep = list(resource_types)
        removed = [key for key in self._records if not any(matches_type(key, rt) for rt in keep)]
        for key in removed:
            self.remove(key)
        return removed

    def invalidate(self, resource_types: str | Iterable[str], *, except_: bool = False) -> list[str]:
        """Bulk-evict by resource type, or everything but the given types with *except_*."""
        types = [resource_types] if isinstance(resource_types, str) else list(resource_types)
        if except_:
            removed = self.remove_all_except(types)
        else:
            removed = [key for resource_type in types for key in self.remove_all_matching(resource_type)]
        _log.info("invalidated", resource_types=types, except_=except_, removed=len(removed))
        return removed

    def reset(self) -> None:
        """Cancel every timer and drop all records, interest sets and refetch marks."""
        for record in self._records.values():
            if record.timer is not None:
                record.timer.cancel()
        self._records.clear()
        self._interest.clear()
        self._refetching.clear()
        cached_records.set(0)

    # ------------------------------------------------------------------
    # Shared refetch marks
    # ------------------------------------------------------------------

    def mark_refetching(self, key: str) -> None:
        if key in self._records:
            self._refetching.add(key)

    def is_refetching(self, key: str) -> bool:
        return key in self._refetching

    def clear_refetching(self, key: str) -> None:
        self._refetching.discard(key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _schedule_eviction(self, record: CacheRecord) -> None:
        if record.timer is None:
            record.timer = CancellableTimer(self._scheduler)
        delay = record.grace_period_ms if record.grace_period_ms is not None else self.grace_period_ms
        key = record.key
        record.timer.schedule(delay, lambda: self._evict(key))
        _log.debug("eviction_scheduled", key=key, delay_ms=delay)

    def _evict(self, key: str) -> None:
        self._refetching.discard(key)
        if self._drop(key):
            evictions_total.labels(reason="grace_period").inc()
            _log.debug("record_evicted", key=key, reason="grace_period")

    def _drop(self, key: str) -> bool:
        record = self._records.pop(key, None)
        if record is None:
            return False
        if record.timer is not None:
            record.timer.cancel()
        cached_records.set(len(self._records))
        return True
