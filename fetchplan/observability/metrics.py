"""Prometheus collectors for the cache and fetch pipeline.

Collectors are module-level so every component records into the default
registry, which the diagnostics API exposes at ``/api/v1/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

cache_lookups_total = Counter(
    "fetchplan_cache_lookups_total",
    "Resource lookups answered from the cache (hit) or sent to the coordinator (miss).",
    ["resource_type", "result"],
)

fetches_total = Counter(
    "fetchplan_fetches_total",
    "Network fetches issued by the request coordinator, by outcome.",
    ["resource_type", "outcome"],
)

fetch_duration_seconds = Histogram(
    "fetchplan_fetch_duration_seconds",
    "Wall-clock duration of coordinator fetches.",
    ["resource_type"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

evictions_total = Counter(
    "fetchplan_evictions_total",
    "Records removed from the store.",
    ["reason"],
)

inflight_requests = Gauge(
    "fetchplan_inflight_requests",
    "Fetches currently in flight.",
)

cached_records = Gauge(
    "fetchplan_cached_records",
    "Records currently held in the store.",
)


def resource_type_of(key: str) -> str:
    """Return the resource-type prefix of a cache key, used as a metric label."""
    return key.split("~", 1)[0]
