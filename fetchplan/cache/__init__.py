"""Cache layer for fetchplan.

Submodules:
    keys   -- Pure cache-key derivation (resource type + resolved dependency fields).
    timer  -- CancellableTimer used for deferred eviction.
    store  -- Reference-counted resource store with grace-period eviction.
"""

from fetchplan.cache.keys import derive_key, key_for
from fetchplan.cache.store import ResourceStore
from fetchplan.cache.timer import CancellableTimer

__all__ = ["CancellableTimer", "ResourceStore", "derive_key", "key_for"]
