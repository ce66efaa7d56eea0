"""Configuration data structures."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from fetchplan.models.resources import RefetchScope


@dataclass
class CacheConfig:
    """Resource store configuration."""

    grace_period_ms: int = 120_000
    refetch_scope: RefetchScope = RefetchScope.CONSUMER


@dataclass
class PrefetchConfig:
    """Prefetcher configuration."""

    debounce_ms: int = 50


@dataclass
class TransportConfig:
    """HTTP transport configuration."""

    base_url: str = ""
    timeout_seconds: float = 10.0


@dataclass
class APIConfig:
    """Diagnostics REST API configuration."""

    enabled: bool = False
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class Hooks:
    """Host application hooks. Set in code; not loadable from the environment."""

    stringify: Callable[[Any], str] | None = None
    on_error: Callable[[BaseException, Mapping[str, Any]], None] | None = None
    track: Callable[[str, Mapping[str, Any]], None] | None = None
    prefilter: Callable[[dict[str, Any]], dict[str, Any] | None] | None = None


@dataclass
class FetchPlanConfig:
    """Top-level fetchplan configuration."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    prefetch: PrefetchConfig = field(default_factory=PrefetchConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
    hooks: Hooks = field(default_factory=Hooks)
