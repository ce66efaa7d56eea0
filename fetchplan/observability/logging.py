"""structlog setup for fetchplan.

Events go to stderr so hosts that print to stdout keep a clean stream.
``json`` is the default renderer; ``console`` is meant for local debugging.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from fetchplan.models.config import LogConfig

LOG_FORMATS = ("json", "console")


def _renderer(fmt: str) -> Any:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer(sort_keys=True)


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure structlog from *config* (defaults: ``info``, ``json``)."""
    config = config or LogConfig()
    if config.format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {config.format!r}")
    log_level = getattr(logging, config.level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.format_exc_info,
            _renderer(config.format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # FetchPlanApp.start() reconfigures
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Return a logger bound to *component* plus any extra *context*."""
    return structlog.get_logger(component=component, **context)  # type: ignore[return-value]
