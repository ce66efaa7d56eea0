"""Diagnostics REST API for fetchplan.

Exposes:
    create_app -- FastAPI application factory.
"""

from fetchplan.api.app import create_app

__all__ = ["create_app"]
