"""Aggregate helpers over per-resource loading states."""

from __future__ import annotations

from collections.abc import Iterable

from fetchplan.models.resources import LoadingState


def has_loaded(states: Iterable[LoadingState]) -> bool:
    """True when every state is loaded (vacuously true for no states)."""
    return all(state == LoadingState.LOADED for state in states)


def is_loading(states: Iterable[LoadingState]) -> bool:
    """True when any state is loading and none has errored."""
    states = list(states)
    return LoadingState.LOADING in states and LoadingState.ERROR not in states


def has_errored(states: Iterable[LoadingState]) -> bool:
    return any(state == LoadingState.ERROR for state in states)


def is_pending(states: Iterable[LoadingState]) -> bool:
    return any(state == LoadingState.PENDING for state in states)
