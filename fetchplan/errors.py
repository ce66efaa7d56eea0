"""Exception taxonomy for fetchplan.

Only ``TransportError`` ever reaches a consumer (as an ``error`` loading
state plus status). Unmet dependencies, stale responses and prefetch
failures are resolved internally and never raised.
"""

from __future__ import annotations

from typing import Any


class FetchPlanError(Exception):
    """Base class for all fetchplan errors."""


class TransportError(FetchPlanError):
    """A fetch settled with a non-2xx response or failed at the network level.

    ``status`` is the HTTP status code, or 0 when no response was received.
    """

    def __init__(self, status: int, body: Any = None, message: str = "") -> None:
        super().__init__(message or f"request failed with status {status}")
        self.status = status
        self.body = body


class MissingURLError(FetchPlanError):
    """An entity was asked to fetch without a ``url`` or ``url_root``."""

    def __init__(self, entity: object) -> None:
        super().__init__(f'A "url" or "url_root" must be specified on {type(entity).__name__}')


class UnknownResourceTypeError(FetchPlanError, KeyError):
    """A descriptor names a resource type that was never registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown resource type: {name!r}")
        self.name = name

    def __str__(self) -> str:
        return str(self.args[0])


class ComponentError(FetchPlanError):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause
