"""Per-consumer fetch orchestration.

A ResourceConsumer owns the loading state of every resource one consumer
declares. Each ``evaluate()`` is one synchronous cycle:

1. expand the executor's descriptors (plus prefetch variants),
2. park resources with unmet ``depends_on`` fields in ``pending``,
3. derive keys and split the rest into cache hits and must-fetch entries,
4. issue must-fetch entries critical first, then noncritical, then prefetch,
5. release interest in keys no longer used and re-attach entity listeners.

Fetch settlements are applied by background tasks only while the resource
still resolves to the key that was requested; anything else is a stale
response and is dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import structlog

from fetchplan.cache.keys import key_for
from fetchplan.cache.store import ResourceStore
from fetchplan.entities.base import Entity
from fetchplan.errors import TransportError
from fetchplan.fetch.coordinator import RequestCoordinator
from fetchplan.models.config import FetchPlanConfig
from fetchplan.models.resources import (
    LoadingState,
    RefetchScope,
    ResourceDescriptor,
    ResourceSlot,
    ResourceType,
)
from fetchplan.observability.metrics import cache_lookups_total
from fetchplan.orchestrator import states
from fetchplan.orchestrator.registry import ResourceRegistry

_log = structlog.get_logger(component="orchestrator.consumer")

GetResources = Callable[[Mapping[str, Any]], Mapping[str, ResourceDescriptor | Mapping[str, Any] | None]]

# provides chains longer than this within one evaluate() are cut off
_MAX_PASSES = 32

_token_ids = itertools.count(1)


@dataclass
class _Entry:
    name: str
    descriptor: ResourceDescriptor
    resource_type: ResourceType
    key: str | None

    @property
    def priority(self) -> int:
        if self.descriptor.prefetch:
            return 2
        return 1 if self.descriptor.noncritical else 0


@dataclass(frozen=True)
class ConsumerView:
    """What a consumer sees after an evaluation cycle."""

    entities: dict[str, Any]
    loading_states: dict[str, LoadingState]
    statuses: dict[str, int | None]
    resource_state: dict[str, Any]
    has_loaded: bool
    is_loading: bool
    has_errored: bool
    has_initially_loaded: bool
    refetch: Callable[..., ConsumerView] = field(repr=False)
    invalidate: Callable[..., list[str]] = field(repr=False)

    def __getitem__(self, name: str) -> Any:
        return self.entities[name]

    def as_props(self) -> dict[str, Any]:
        """Flatten into ``{name, <name>_loading_state, <name>_status, ...}``."""
        props: dict[str, Any] = dict(self.resource_state)
        for name, entity in self.entities.items():
            props[name] = entity
            props[f"{name}_loading_state"] = self.loading_states[name]
            if self.statuses.get(name) is not None:
                props[f"{name}_status"] = self.statuses[name]
        props.update(
            has_loaded=self.has_loaded,
            is_loading=self.is_loading,
            has_errored=self.has_errored,
            has_initially_loaded=self.has_initially_loaded,
            refetch=self.refetch,
            invalidate=self.invalidate,
        )
        return props


class ResourceConsumer:
    """Declares resources for one consumer and tracks their loading states.

    Args:
        get_resources: Executor mapping the consumer's current input to a
                       ``{name: descriptor}`` mapping. Plain dicts are accepted.
        store:         Shared resource store.
        coordinator:   Shared request coordinator.
        registry:      Resource-type registry.
        config:        Refetch scope and host hooks.
        on_change:     Called with a fresh view whenever state changes outside
                       an ``evaluate()`` call (settlements, entity updates).
    """

    def __init__(
        self,
        get_resources: GetResources,
        *,
        store: ResourceStore,
        coordinator: RequestCoordinator,
        registry: ResourceRegistry,
        config: FetchPlanConfig | None = None,
        on_change: Callable[[ConsumerView], None] | None = None,
        name: str | None = None,
    ) -> None:
        self._get_resources = get_resources
        self._store = store
        self._coordinator = coordinator
        self._registry = registry
        self._config = config or FetchPlanConfig()
        self._on_change = on_change
        self.token = f"{name or 'consumer'}#{next(_token_ids)}"

        self._props: dict[str, Any] = {}
        self._resource_state: dict[str, Any] = {}
        self._slots: dict[str, ResourceSlot] = {}
        self._statuses: dict[str, int | None] = {}
        self._registered_keys: set[str] = set()
        self._prefetch_keys: set[str] = set()
        self._refetch_requested: set[str] = set()
        self._listened: list[Entity] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._initially_loaded = False
        self._mounted = True

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def mounted(self) -> bool:
        return self._mounted

    def evaluate(self, props: Mapping[str, Any] | None = None) -> ConsumerView:
        """Run one evaluation cycle against *props* (default: the last props seen).

        Must be called from within a running event loop; fetches are issued
        as tasks and settle later.
        """
        if props is not None:
            self._props = dict(props)
        if not self._mounted:
            return self.view()
        for _ in range(_MAX_PASSES):
            if not self._run_cycle():
                break
        else:
            _log.warning("provides_not_converging", consumer=self.token, passes=_MAX_PASSES)
        return self.view()

    def view(self) -> ConsumerView:
        critical = [slot.state for slot in self._slots.values() if slot.descriptor and slot.descriptor.critical]
        if states.has_loaded(critical):
            self._initially_loaded = True
        return ConsumerView(
            entities={name: slot.entity for name, slot in self._slots.items()},
            loading_states={name: slot.state for name, slot in self._slots.items()},
            statuses=dict(self._statuses),
            resource_state=dict(self._resource_state),
            has_loaded=states.has_loaded(critical),
            is_loading=states.is_loading(critical),
            has_errored=states.has_errored(critical),
            has_initially_loaded=self._initially_loaded,
            refetch=self.refetch,
            invalidate=self.invalidate,
        )

    def refetch(self, names: str | Iterable[str]) -> ConsumerView:
        """Fetch the named resources again, bypassing the cache.

        With the ``shared`` refetch scope every consumer holding the same
        record re-enters ``loading`` and joins the one refetch.
        """
        names = [names] if isinstance(names, str) else list(names)
        shared = self._config.cache.refetch_scope == RefetchScope.SHARED
        for name in names:
            slot = self._slots.get(name)
            if slot is None or slot.key is None:
                continue
            self._refetch_requested.add(name)
            if shared and slot.key in self._store:
                self._store.mark_refetching(slot.key)
                self._store.get(slot.key).trigger_update()
        return self.evaluate()

    def invalidate(self, resource_types: str | Iterable[str], *, except_: bool = False) -> list[str]:
        """Evict cached records by resource type. Consumers keep what they hold."""
        return self._store.invalidate(resource_types, except_=except_)

    def set_resource_state(self, **fields: Any) -> ConsumerView:
        """Merge *fields* into the side-channel input and re-evaluate."""
        self._resource_state = {**self._resource_state, **fields}
        return self.evaluate()

    def unmount(self) -> None:
        """Release every key and detach listeners. In-flight fetches keep running."""
        if not self._mounted:
            return
        self._mounted = False
        self._store.unregister(self.token)
        self._registered_keys.clear()
        for entity in self._listened:
            entity.unsubscribe(self.token)
        self._listened = []

    async def settle(self) -> None:
        """Wait until no settlement task is outstanding, including follow-ups."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ------------------------------------------------------------------
    # Evaluation cycle
    # ------------------------------------------------------------------

    def _inputs(self) -> dict[str, Any]:
        return {**self._props, **self._resource_state}

    def _declare(self, inputs: Mapping[str, Any]) -> Mapping[str, Any]:
        """Run the executor; failures go to the ``on_error`` hook and propagate."""
        try:
            return self._get_resources(inputs) or {}
        except Exception as exc:
            _log.warning("executor_failed", consumer=self.token, error=str(exc))
            if self._config.hooks.on_error is not None:
                self._config.hooks.on_error(exc, {"consumer": self.token})
            raise

    def _expand(self, inputs: Mapping[str, Any]) -> list[_Entry]:
        entries: list[_Entry] = []
        for name, value in self._declare(inputs).items():
            descriptor = ResourceDescriptor.coerce(name, value)
            entries.append(self._entry(name, descriptor, inputs))
            for overrides in descriptor.prefetches:
                variant = self._declare({**inputs, **overrides}).get(name)
                prefetch = ResourceDescriptor.coerce(name, variant)
                prefetch.prefetch = True
                prefetch.prefetches = ()
                entries.append(self._entry(name, prefetch, {**inputs, **overrides}))
        return entries

    def _entry(self, name: str, descriptor: ResourceDescriptor, inputs: Mapping[str, Any]) -> _Entry:
        resource_type = self._registry.get(descriptor.resource_type)
        key = None
        if not descriptor.missing_dependencies(inputs):
            key = key_for(resource_type, descriptor, self._config.hooks.stringify)
        return _Entry(name, descriptor, resource_type, key)

    def _run_cycle(self) -> bool:
        """One pass; returns True if ``provides`` changed the resource state."""
        state_before = self._resource_state
        entries = self._expand(self._inputs())
        seen: set[str] = set()
        used_keys: set[str] = set()
        prefetch_keys: set[str] = set()
        to_fetch: list[tuple[_Entry, bool]] = []

        for entry in entries:
            if entry.descriptor.prefetch:
                if entry.key is None:
                    continue
                used_keys.add(entry.key)
                prefetch_keys.add(entry.key)
                if self._coordinator.is_fresh(entry.key):
                    self._store.register(entry.key, self.token)
                elif entry.key not in self._prefetch_keys:
                    to_fetch.append((entry, False))
                continue

            seen.add(entry.name)
            if entry.key is not None:
                used_keys.add(entry.key)
            fetch = self._update_slot(entry)
            if fetch is not None:
                to_fetch.append((entry, fetch))

        for name in list(self._slots):
            if name not in seen:
                del self._slots[name]
                self._statuses.pop(name, None)

        for entry, forced in sorted(to_fetch, key=lambda item: item[0].priority):
            self._issue(entry, forced)

        self._prefetch_keys = prefetch_keys
        self._release(used_keys)
        self._attach_listeners()
        return self._resource_state != state_before

    def _update_slot(self, entry: _Entry) -> bool | None:
        """Bring the slot for *entry* up to date.

        Returns None when nothing has to be fetched, else whether the fetch is
        forced past the cache.
        """
        name, descriptor, key = entry.name, entry.descriptor, entry.key
        prev = self._slots.get(name)

        if key is None:
            if prev is None or prev.state != LoadingState.PENDING:
                self._slots[name] = ResourceSlot(
                    LoadingState.PENDING, entity=self._registry.empty(descriptor.resource_type), descriptor=descriptor
                )
                self._statuses.pop(name, None)
            return None

        supplied = self._props.get(name)
        if isinstance(supplied, Entity):
            if prev is None or prev.entity is not supplied or prev.key != key:
                self._store.put(key, supplied, self.token, grace_period_ms=entry.resource_type.cache_timeout_ms)
                self._slots[name] = ResourceSlot(LoadingState.LOADED, key, supplied, descriptor=descriptor)
            return None

        refetch = self._refetch_flagged(name, key) or _refetch_declared(prev, descriptor)
        if prev is not None and not self._needs_update(prev, entry, refetch):
            prev.descriptor = descriptor
            self._refetch_requested.discard(name)
            return None
        self._refetch_requested.discard(name)

        if self._reparent(prev, entry):
            return None

        forced = refetch or descriptor.force or descriptor.refetch
        if not forced:
            if descriptor.lazy or not descriptor.fetch:
                self._coordinator.request(
                    key,
                    partial(self._registry.build_for, descriptor),
                    token=self.token,
                    lazy=descriptor.lazy,
                    fetch=descriptor.fetch,
                    grace_period_ms=entry.resource_type.cache_timeout_ms,
                )
                self._slots[name] = ResourceSlot(
                    LoadingState.LOADED, key, self._store.get(key), lazy=descriptor.lazy, descriptor=descriptor
                )
                return None
            if self._coordinator.is_fresh(key):
                self._store.register(key, self.token)
                entity = self._store.get(key)
                self._slots[name] = ResourceSlot(LoadingState.LOADED, key, entity, descriptor=descriptor)
                self._provide(descriptor, entity)
                cache_lookups_total.labels(resource_type=entry.resource_type.name, result="hit").inc()
                _log.debug("cache_hit", consumer=self.token, resource=name, key=key)
                return None

        cache_lookups_total.labels(resource_type=entry.resource_type.name, result="miss").inc()
        _log.debug("cache_miss", consumer=self.token, resource=name, key=key, forced=forced)
        # keep showing the previous entity while the new one loads
        entity = prev.entity if prev is not None and prev.state == LoadingState.LOADED else None
        self._slots[name] = ResourceSlot(
            LoadingState.LOADING,
            key,
            entity if entity is not None else self._registry.empty(descriptor.resource_type),
            descriptor=descriptor,
        )
        return forced

    def _refetch_flagged(self, name: str, key: str) -> bool:
        if name in self._refetch_requested:
            return True
        return self._config.cache.refetch_scope == RefetchScope.SHARED and self._store.is_refetching(key)

    @staticmethod
    def _needs_update(prev: ResourceSlot, entry: _Entry, refetch: bool) -> bool:
        if prev.key != entry.key or prev.state == LoadingState.PENDING:
            return True
        if refetch and prev.state in (LoadingState.LOADED, LoadingState.ERROR):
            return True
        return prev.lazy != entry.descriptor.lazy

    def _reparent(self, prev: ResourceSlot | None, entry: _Entry) -> bool:
        """Move a just-created record to the key it earned by acquiring an id."""
        if prev is None or prev.state != LoadingState.LOADED or prev.descriptor is None:
            return False
        id_attribute = entry.resource_type.id_attribute
        if _identity(prev.descriptor, id_attribute) is not None:
            return False
        if _identity(entry.descriptor, id_attribute) is None:
            return False
        entity = self._store.get(prev.key)
        if entity is None:
            return False
        self._store.put(entry.key, entity, self.token, grace_period_ms=entry.resource_type.cache_timeout_ms)
        self._store.remove(prev.key)
        self._registered_keys.discard(prev.key)
        self._slots[entry.name] = ResourceSlot(LoadingState.LOADED, entry.key, entity, descriptor=entry.descriptor)
        _log.debug("record_reparented", consumer=self.token, resource=entry.name, old_key=prev.key, key=entry.key)
        return True

    def _issue(self, entry: _Entry, forced: bool) -> None:
        descriptor = entry.descriptor
        started = None
        if entry.resource_type.should_measure(descriptor) and entry.key not in self._store:
            started = time.monotonic()
        future = self._coordinator.request(
            entry.key,
            partial(self._registry.build_for, descriptor),
            token=self.token,
            params=descriptor.params,
            force=forced,
            grace_period_ms=entry.resource_type.cache_timeout_ms,
        )
        task = asyncio.get_running_loop().create_task(self._settle_one(entry, future, started))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _release(self, used_keys: set[str]) -> None:
        unused = self._registered_keys - used_keys
        if unused:
            self._store.unregister(self.token, unused)
        self._registered_keys = used_keys

    def _attach_listeners(self) -> None:
        current = {
            id(slot.entity): slot.entity
            for slot in self._slots.values()
            if isinstance(slot.entity, Entity) and not slot.entity.is_empty
        }
        for entity in self._listened:
            if id(entity) not in current:
                entity.unsubscribe(self.token)
        for entity in current.values():
            entity.subscribe(self.token, self._on_entity_update)
        self._listened = list(current.values())

    def _provide(self, descriptor: ResourceDescriptor, entity: Any) -> None:
        if descriptor.provides is None:
            return
        fields = descriptor.provides(entity, self._inputs())
        if fields:
            merged = {**self._resource_state, **fields}
            if merged != self._resource_state:
                self._resource_state = merged

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def _is_current(self, name: str, key: str) -> bool:
        slot = self._slots.get(name)
        return self._mounted and slot is not None and slot.key == key

    async def _settle_one(self, entry: _Entry, future: asyncio.Future[Any], started: float | None) -> None:
        name, descriptor, key = entry.name, entry.descriptor, entry.key
        try:
            entity, status = await future
        except Exception as exc:
            status = exc.status if isinstance(exc, TransportError) else None
            if descriptor.prefetch:
                _log.debug("prefetch_failed", consumer=self.token, resource=name, key=key, status=status)
                return
            if not self._is_current(name, key):
                _log.debug("stale_response_discarded", consumer=self.token, resource=name, key=key)
                return
            self._slots[name] = ResourceSlot(
                LoadingState.ERROR, key, self._registry.empty(descriptor.resource_type), descriptor=descriptor
            )
            self._statuses[name] = status
            if self._config.hooks.on_error is not None:
                self._config.hooks.on_error(exc, {"resource": name, "key": key, "status": status})
            self._changed()
            return

        if started is not None and self._config.hooks.track is not None:
            self._config.hooks.track(
                "API Fetch",
                {
                    "resource": name,
                    "params": descriptor.params,
                    "path": descriptor.path,
                    "duration_ms": round((time.monotonic() - started) * 1000),
                },
            )
        if descriptor.prefetch:
            return
        if not self._is_current(name, key):
            _log.debug("stale_response_discarded", consumer=self.token, resource=name, key=key)
            return

        self._provide(descriptor, entity)
        self._slots[name] = ResourceSlot(LoadingState.LOADED, key, entity, descriptor=descriptor)
        self._statuses[name] = status
        self._changed()

    def _on_entity_update(self) -> None:
        if self._mounted:
            self._changed()

    def _changed(self) -> None:
        view = self.evaluate()
        if self._on_change is not None:
            self._on_change(view)


def _refetch_declared(prev: ResourceSlot | None, descriptor: ResourceDescriptor) -> bool:
    """True when the executor just raised ``refetch`` for a resource it already held."""
    # rising edge only: the settled slot keeps the refetching descriptor
    if not descriptor.refetch or prev is None or prev.descriptor is None:
        return False
    return not prev.descriptor.refetch


def _identity(descriptor: ResourceDescriptor, id_attribute: str) -> Any:
    return descriptor.data.get(id_attribute) or descriptor.path.get(id_attribute)
