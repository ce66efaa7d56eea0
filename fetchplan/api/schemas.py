"""Pydantic response models for the diagnostics API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    cached_records: int
    inflight_requests: int


class CacheEntry(BaseModel):
    """One record held by the resource store."""

    key: str
    resource_type: str
    lazy: bool
    interest_count: int = Field(ge=0)
    eviction_pending: bool
    in_flight: bool


class CacheEntryDetail(CacheEntry):
    entity_kind: str | None = None
    value: Any = None


class CacheListResponse(BaseModel):
    records: list[CacheEntry]
    total: int


class InvalidateResponse(BaseModel):
    removed: list[str]
    total: int
