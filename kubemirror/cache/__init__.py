"""Cache layer for kubemirror.

Submodules:
    delta_queue -- Bounded, per-key coalescing buffer between watcher and dispatcher.
    store       -- Thread-safe local mirror of one collection, written only by the dispatcher.
"""

from kubemirror.cache.delta_queue import DeltaQueue, coalesce
from kubemirror.cache.store import LocalStore

__all__ = ["DeltaQueue", "LocalStore", "coalesce"]
