"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from fetchplan.models.config import (
    APIConfig,
    CacheConfig,
    FetchPlanConfig,
    LogConfig,
    PrefetchConfig,
    TransportConfig,
)
from fetchplan.models.resources import RefetchScope


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"FETCHPLAN_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _validate_refetch_scope(value: str) -> RefetchScope:
    try:
        return RefetchScope(value.lower())
    except ValueError:
        valid = {scope.value for scope in RefetchScope}
        raise ValueError(f"Invalid refetch scope: {value}. Must be one of {valid}") from None


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> FetchPlanConfig:
    """Load configuration from FETCHPLAN_* environment variables."""
    return FetchPlanConfig(
        cache=CacheConfig(
            grace_period_ms=_env_int("CACHE_GRACE_PERIOD_MS", 120_000, min_val=0),
            refetch_scope=_validate_refetch_scope(_env("REFETCH_SCOPE", "consumer")),
        ),
        prefetch=PrefetchConfig(
            debounce_ms=_env_int("PREFETCH_DEBOUNCE_MS", 50, min_val=0, max_val=5000),
        ),
        transport=TransportConfig(
            base_url=_env("BASE_URL", ""),
            timeout_seconds=_env_float("HTTP_TIMEOUT", 10.0),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", False),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
