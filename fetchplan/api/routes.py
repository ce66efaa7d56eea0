"""Diagnostics endpoints over the resource store and request coordinator."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from fetchplan.api.schemas import (
    CacheEntry,
    CacheEntryDetail,
    CacheListResponse,
    HealthResponse,
    InvalidateResponse,
)
from fetchplan.cache.store import ResourceStore
from fetchplan.fetch.coordinator import RequestCoordinator
from fetchplan.observability.metrics import resource_type_of

router = APIRouter()
_log = structlog.get_logger(component="api.routes")


def _entry(store: ResourceStore, coordinator: RequestCoordinator, key: str) -> CacheEntry:
    record = store.get_record(key)
    assert record is not None
    return CacheEntry(
        key=key,
        resource_type=resource_type_of(key),
        lazy=record.lazy,
        interest_count=len(store.interest(key)),
        eviction_pending=store.eviction_pending(key),
        in_flight=coordinator.is_in_flight(key),
    )


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    from fetchplan import __version__

    store: ResourceStore = request.app.state.store
    coordinator: RequestCoordinator = request.app.state.coordinator
    return HealthResponse(
        version=__version__,
        cached_records=len(store),
        inflight_requests=len(coordinator.in_flight()),
    )


@router.get("/cache", response_model=CacheListResponse)
def list_cache(request: Request) -> CacheListResponse:
    store: ResourceStore = request.app.state.store
    coordinator: RequestCoordinator = request.app.state.coordinator
    records = [_entry(store, coordinator, key) for key in sorted(store.keys())]
    return CacheListResponse(records=records, total=len(records))


@router.get("/cache/{key:path}", response_model=CacheEntryDetail)
def get_cache_entry(key: str, request: Request) -> CacheEntryDetail:
    store: ResourceStore = request.app.state.store
    coordinator: RequestCoordinator = request.app.state.coordinator
    if key not in store:
        raise HTTPException(status_code=404, detail=f"No cached record for key {key!r}")
    value = store.get(key)
    to_json = getattr(value, "to_json", None)
    return CacheEntryDetail(
        **_entry(store, coordinator, key).model_dump(),
        entity_kind=str(getattr(value, "kind", "")) or None,
        value=to_json() if callable(to_json) else None,
    )


@router.delete("/cache", response_model=InvalidateResponse)
def invalidate(
    request: Request,
    resource_type: Annotated[list[str], Query(min_length=1)],
    except_: Annotated[bool, Query(alias="except")] = False,
) -> InvalidateResponse:
    store: ResourceStore = request.app.state.store
    removed = store.invalidate(resource_type, except_=except_)
    _log.info("cache invalidated via api", resource_types=resource_type, removed=len(removed))
    return InvalidateResponse(removed=removed, total=len(removed))


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
