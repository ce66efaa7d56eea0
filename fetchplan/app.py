"""Application bootstrap for fetchplan.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → transport → store → coordinator
              → registry → REST (optional)

Shutdown is graceful: components are stopped in reverse startup order and
each one's stop error is caught and logged on its own, so a single failure
does not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from fetchplan.cache.store import ResourceStore
from fetchplan.cache.timer import Scheduler
from fetchplan.config import load_config
from fetchplan.entities.transport import HttpTransport, Transport
from fetchplan.errors import ComponentError
from fetchplan.fetch.coordinator import RequestCoordinator
from fetchplan.fetch.prefetch import Prefetcher
from fetchplan.models.config import FetchPlanConfig, Hooks
from fetchplan.models.resources import ResourceType
from fetchplan.observability.logging import get_logger, setup_logging
from fetchplan.orchestrator.consumer import ConsumerView, GetResources, ResourceConsumer
from fetchplan.orchestrator.registry import ResourceRegistry

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class FetchPlanApp:
    """Application root. Owns the shared store, coordinator and registry.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.

    Args:
        config:    Pre-built configuration; loaded from the environment if None.
        hooks:     Host hooks, overriding ``config.hooks``.
        transport: Transport for every entity; an ``HttpTransport`` if None.
        scheduler: Timer scheduler for eviction and prefetch debounce.
    """

    def __init__(
        self,
        config: FetchPlanConfig | None = None,
        *,
        hooks: Hooks | None = None,
        transport: Transport | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.config = config
        self._hooks = hooks
        self._transport: Transport | None = transport
        self._owns_transport = transport is None
        self._scheduler = scheduler

        self.store: ResourceStore | None = None
        self.coordinator: RequestCoordinator | None = None
        self.registry: ResourceRegistry | None = None
        self._rest_server: Any = None

        self._background_tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises ComponentError if a component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()
        if self._hooks is not None:
            self.config.hooks = self._hooks

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log)
        self._log = get_logger("app")
        self._log.info("fetchplan starting", version=_fetchplan_version())

        # --- 3. Transport -----------------------------------------------
        self._start_transport()

        # --- 4. Store, coordinator, registry ----------------------------
        self.store = ResourceStore(self.config.cache.grace_period_ms, scheduler=self._scheduler)
        self.coordinator = RequestCoordinator(self.store)
        self.registry = ResourceRegistry(transport=self._transport)

        # --- 5. REST API ------------------------------------------------
        if self.config.api.enabled:
            await self._start_rest()

        self._running = True
        self._log.info(
            "fetchplan started",
            grace_period_ms=self.config.cache.grace_period_ms,
            refetch_scope=str(self.config.cache.refetch_scope),
            api_enabled=self.config.api.enabled,
        )

    def _start_transport(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if self._transport is not None:
            self._log.debug("using injected transport")
            return
        try:
            self._transport = HttpTransport(
                base_url=self.config.transport.base_url,
                timeout=self.config.transport.timeout_seconds,
                stringify=self.config.hooks.stringify,
                prefilter=self.config.hooks.prefilter,
            )
        except Exception as exc:
            raise ComponentError("transport", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn diagnostics server."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from fetchplan.api import create_app

            fastapi_app = create_app(store=self.store, coordinator=self.coordinator, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def _require_started(self) -> tuple[ResourceStore, RequestCoordinator, ResourceRegistry, FetchPlanConfig]:
        if self.store is None or self.coordinator is None or self.registry is None or self.config is None:
            raise RuntimeError("FetchPlanApp.start() must be awaited first")
        return self.store, self.coordinator, self.registry, self.config

    def register(self, name: str, entity: type, **kwargs: Any) -> ResourceType:
        """Register a resource type; see ``ResourceRegistry.register``."""
        _, _, registry, _ = self._require_started()
        return registry.register(name, entity, **kwargs)

    def consumer(
        self,
        get_resources: GetResources,
        *,
        on_change: Callable[[ConsumerView], None] | None = None,
        name: str | None = None,
    ) -> ResourceConsumer:
        store, coordinator, registry, config = self._require_started()
        return ResourceConsumer(
            get_resources,
            store=store,
            coordinator=coordinator,
            registry=registry,
            config=config,
            on_change=on_change,
            name=name,
        )

    def prefetcher(self, get_resources: GetResources, expected_props: Mapping[str, Any] | None = None) -> Prefetcher:
        _, coordinator, registry, config = self._require_started()
        return Prefetcher(get_resources, expected_props, coordinator=coordinator, registry=registry, config=config)

    def invalidate(self, resource_types: str | Iterable[str], *, except_: bool = False) -> list[str]:
        store, _, _, _ = self._require_started()
        return store.invalidate(resource_types, except_=except_)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("fetchplan shutting down")
        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True
        if self._background_tasks:
            _done, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        self.registry = None
        await self._stop_component("coordinator", self.coordinator, "reset")
        await self._stop_component("store", self.store, "reset")
        if self._owns_transport:
            await self._stop_component("transport", self._transport, "aclose")
            self._transport = None

        log.info("fetchplan stopped")

    async def _stop_component(self, name: str, component: object | None, method: str) -> None:
        """Call *method* on a component if it has it, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, method, None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _fetchplan_version() -> str:
    from fetchplan import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Serve the diagnostics API until SIGTERM/SIGINT."""
    config = load_config()
    config.api.enabled = True
    app = FetchPlanApp(config)
    loop = asyncio.get_running_loop()

    stopped = asyncio.Event()
    shutdown_tasks: set[asyncio.Task[None]] = set()

    async def _shutdown() -> None:
        try:
            await app.stop()
        finally:
            stopped.set()

    def _request_shutdown() -> None:
        if shutdown_tasks:
            return
        task = loop.create_task(_shutdown(), name="shutdown")
        shutdown_tasks.add(task)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await stopped.wait()
    except ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()


def run() -> None:
    """Console-script entrypoint."""
    asyncio.run(main())
