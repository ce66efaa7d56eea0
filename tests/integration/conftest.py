"""Shared fixtures for fetchplan integration tests.

Consumers are mounted against the shared store, coordinator and registry
from the top-level conftest and unmounted again at teardown, so a test
never leaks interest into the next one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from fetchplan.orchestrator.consumer import ResourceConsumer


@pytest.fixture
def mount(make_consumer: Callable[..., ResourceConsumer]) -> Iterator[Callable[..., ResourceConsumer]]:
    """Create a consumer and run its first evaluation with *props*."""
    mounted: list[ResourceConsumer] = []

    def _mount(get_resources: Any, props: dict[str, Any] | None = None, **kwargs: Any) -> ResourceConsumer:
        consumer = make_consumer(get_resources, **kwargs)
        consumer.evaluate(props or {})
        mounted.append(consumer)
        return consumer

    yield _mount

    for consumer in mounted:
        consumer.unmount()


@pytest.fixture
def until() -> Callable[..., Any]:
    """Yield to the event loop until *predicate* holds."""

    async def _until(predicate: Callable[[], bool], *, turns: int = 200) -> None:
        for _ in range(turns):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError(f"condition not reached after {turns} loop turns")

    return _until
