"""Shared fixtures for fetchplan tests.

Provides a manual scheduler that drives eviction and debounce timers in
virtual time, a fake transport that counts requests and can hold responses
until a test releases them, and a registry with the resource types the
scenarios use.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from fetchplan.cache.store import ResourceStore
from fetchplan.entities import Record, RecordList
from fetchplan.errors import TransportError
from fetchplan.fetch.coordinator import RequestCoordinator
from fetchplan.models.config import FetchPlanConfig
from fetchplan.orchestrator.consumer import ResourceConsumer
from fetchplan.orchestrator.registry import ResourceRegistry

GRACE_PERIOD_MS = 120_000


# ---------------------------------------------------------------------------
# Manual scheduler
# ---------------------------------------------------------------------------


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """``call_later`` replacement whose clock only moves on ``advance()``."""

    def __init__(self) -> None:
        self.now_ms = 0.0
        self._queue: list[tuple[float, int, _Handle, Callable[..., Any], tuple[Any, ...]]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> _Handle:
        handle = _Handle()
        heapq.heappush(self._queue, (self.now_ms + delay * 1000, next(self._seq), handle, callback, args))
        return handle

    def advance(self, ms: float) -> None:
        """Move the clock forward, firing every callback that falls due on the way."""
        target = self.now_ms + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._queue)
            self.now_ms = due
            if not handle.cancelled:
                callback(*args)
        self.now_ms = target

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Transport double: canned responses per url, optional gates, call log."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._routes: dict[str, tuple[int, Any]] = {}
        self._gates: dict[str, asyncio.Event] = {}

    def route(self, url: str, body: Any = None, status: int = 200) -> None:
        self._routes[url] = (status, {} if body is None else body)

    def gate(self, url: str) -> asyncio.Event:
        """Hold responses for *url* until the returned event is set."""
        event = asyncio.Event()
        self._gates[url] = event
        return event

    def count(self, url: str | None = None) -> int:
        if url is None:
            return len(self.calls)
        return sum(1 for called, _ in self.calls if called == url)

    @property
    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]

    async def request(self, url: str, options: Any) -> tuple[Any, httpx.Response]:
        self.calls.append((url, dict(options)))
        gate = self._gates.get(url)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        status, body = self._routes.get(url, (200, {}))
        response = httpx.Response(
            status,
            json=body,
            request=httpx.Request(options.get("method", "GET"), f"http://test{url}"),
        )
        if status >= 400:
            raise TransportError(status, body)
        return body, response


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class User(Record):
    url_root = "/users"


class Post(Record):
    url_root = "/posts"


class Comment(Record):
    pass


class Comments(RecordList):
    url_template = "/posts/{post_id}/comments"
    record_class = Comment


class Todos(RecordList):
    url_root = "/todos"


def _todo_filters(params: Any) -> dict[str, Any]:
    return {"status": params.get("status"), "limit": params.get("limit")}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store(scheduler: ManualScheduler) -> ResourceStore:
    return ResourceStore(GRACE_PERIOD_MS, scheduler=scheduler)


@pytest.fixture
def coordinator(store: ResourceStore) -> RequestCoordinator:
    return RequestCoordinator(store)


@pytest.fixture
def transport() -> FakeTransport:
    transport = FakeTransport()
    transport.route("/users/7", {"id": 7, "name": "Ada"})
    transport.route("/posts/3", {"id": 3, "title": "Cooperative scheduling"})
    transport.route("/posts/3/comments", [{"id": 1, "body": "first"}, {"id": 2, "body": "second"}])
    transport.route("/todos", [{"id": 1, "status": "open"}])
    return transport


@pytest.fixture
def registry(transport: FakeTransport) -> ResourceRegistry:
    registry = ResourceRegistry(transport=transport)
    registry.register("user", User, dependencies=["id"])
    registry.register("post", Post, dependencies=["id"])
    registry.register("comments", Comments, dependencies=["post_id"])
    registry.register("todos", Todos, dependencies=[_todo_filters], cache_timeout_ms=5_000)
    return registry


@pytest.fixture
def config() -> FetchPlanConfig:
    return FetchPlanConfig()


@pytest.fixture
def make_consumer(
    store: ResourceStore,
    coordinator: RequestCoordinator,
    registry: ResourceRegistry,
    config: FetchPlanConfig,
) -> Callable[..., ResourceConsumer]:
    def _make(get_resources: Any, **kwargs: Any) -> ResourceConsumer:
        kwargs.setdefault("config", config)
        return ResourceConsumer(
            get_resources,
            store=store,
            coordinator=coordinator,
            registry=registry,
            **kwargs,
        )

    return _make
