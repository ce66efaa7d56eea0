"""Per-entity listener registry keyed by consumer token."""

from __future__ import annotations

from collections.abc import Callable, Hashable


class ListenerRegistry:
    """Maps consumer tokens to update callbacks.

    A token holds at most one callback; subscribing again replaces it.
    Callbacks take no arguments: listeners only need to know that the entity
    changed, not what changed.
    """

    def __init__(self) -> None:
        self._callbacks: dict[Hashable, Callable[[], None]] = {}

    def subscribe(self, token: Hashable, callback: Callable[[], None]) -> None:
        self._callbacks[token] = callback

    def unsubscribe(self, token: Hashable) -> None:
        self._callbacks.pop(token, None)

    def trigger(self) -> None:
        # copy: callbacks may subscribe/unsubscribe while we iterate
        for callback in list(self._callbacks.values()):
            callback()

    def __contains__(self, token: object) -> bool:
        return token in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)
