"""Integration tests for the FetchPlanApp bootstrap: start/stop lifecycle and factories."""

from __future__ import annotations

import asyncio
import os
import signal

import pytest

import fetchplan.app as app_module
from fetchplan.app import FetchPlanApp, main
from fetchplan.entities import HttpTransport, Record
from fetchplan.models.config import FetchPlanConfig, Hooks
from fetchplan.models.resources import LoadingState

pytestmark = pytest.mark.integration


class User(Record):
    url_root = "/users"


def user_resources(props):
    return {"user": {"path": {"id": props.get("user_id")}, "depends_on": ["user_id"]}}


@pytest.fixture
async def app(transport, scheduler):
    app = FetchPlanApp(FetchPlanConfig(), transport=transport, scheduler=scheduler)
    await app.start()
    yield app
    await app.stop()


class TestLifecycle:
    async def test_start_wires_components(self, app: FetchPlanApp, transport) -> None:
        assert app.running
        assert app.store is not None
        assert app.coordinator is not None
        assert app.coordinator.store is app.store
        assert app.registry is not None
        assert app.registry.transport is transport

    async def test_stop_is_idempotent(self, transport, scheduler) -> None:
        app = FetchPlanApp(FetchPlanConfig(), transport=transport, scheduler=scheduler)
        await app.stop()
        await app.start()
        await app.stop()
        await app.stop()
        assert not app.running

    async def test_stop_resets_store(self, app: FetchPlanApp) -> None:
        app.register("user", User, dependencies=["id"])
        consumer = app.consumer(user_resources)
        consumer.evaluate({"user_id": 7})
        await consumer.settle()
        store = app.store
        assert len(store) == 1

        await app.stop()

        assert len(store) == 0
        assert app.registry is None

    async def test_owned_transport_is_built_and_closed(self, scheduler) -> None:
        config = FetchPlanConfig()
        config.transport.base_url = "http://api.test"
        app = FetchPlanApp(config, scheduler=scheduler)

        await app.start()
        assert isinstance(app.registry.transport, HttpTransport)
        await app.stop()

        assert app._transport is None

    async def test_config_loaded_from_environment(self, monkeypatch: pytest.MonkeyPatch, transport) -> None:
        monkeypatch.setenv("FETCHPLAN_CACHE_GRACE_PERIOD_MS", "1000")
        monkeypatch.delenv("FETCHPLAN_API_ENABLED", raising=False)
        app = FetchPlanApp(transport=transport)

        await app.start()
        try:
            assert app.config is not None
            assert app.store.grace_period_ms == 1000
        finally:
            await app.stop()

    async def test_hooks_override_config(self, transport, scheduler) -> None:
        hooks = Hooks(on_error=lambda exc, info: None)
        app = FetchPlanApp(FetchPlanConfig(), hooks=hooks, transport=transport, scheduler=scheduler)
        await app.start()
        try:
            assert app.config.hooks is hooks
        finally:
            await app.stop()


class TestFactories:
    async def test_requires_start(self) -> None:
        app = FetchPlanApp(FetchPlanConfig())
        with pytest.raises(RuntimeError, match="start"):
            app.consumer(user_resources)
        with pytest.raises(RuntimeError, match="start"):
            app.invalidate("user")

    async def test_consumer_loads_through_app(self, app: FetchPlanApp, transport) -> None:
        app.register("user", User, dependencies=["id"])
        consumer = app.consumer(user_resources, name="profile")
        assert consumer.token.startswith("profile#")

        consumer.evaluate({"user_id": 7})
        await consumer.settle()

        assert consumer.view().loading_states["user"] == LoadingState.LOADED
        assert transport.urls == ["/users/7"]

    async def test_invalidate_through_app(self, app: FetchPlanApp) -> None:
        app.register("user", User, dependencies=["id"])
        consumer = app.consumer(user_resources)
        consumer.evaluate({"user_id": 7})
        await consumer.settle()

        assert app.invalidate("user") == ["user~id=7"]

    async def test_prefetcher_through_app(self, app: FetchPlanApp, scheduler, transport) -> None:
        app.register("user", User, dependencies=["id"])
        hover = app.prefetcher(user_resources, {"user_id": 7})

        hover.on_enter()
        scheduler.advance(app.config.prefetch.debounce_ms)
        await hover.settle()

        assert "user~id=7" in app.store
        assert transport.count() == 1


class TestMain:
    async def test_sigterm_stops_app_and_returns(self, monkeypatch: pytest.MonkeyPatch, until) -> None:
        started: list[FetchPlanApp] = []

        async def _no_rest(self: FetchPlanApp) -> None:
            started.append(self)

        monkeypatch.setattr(app_module, "load_config", FetchPlanConfig)
        monkeypatch.setattr(FetchPlanApp, "_start_rest", _no_rest)
        loop = asyncio.get_running_loop()

        task = asyncio.create_task(main())
        try:
            await until(lambda: bool(started) and started[0].running)
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(task, timeout=5)
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

        assert not started[0].running
        assert started[0].store is None or len(started[0].store) == 0
