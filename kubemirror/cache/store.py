"""Thread-safe local mirror of one remote collection.

LocalStore holds the last known object per key.  The read API (``get``,
``list``, ``keys``, ``snapshot``) is safe from any thread or task.  The
write API is private to the package: only the EventDispatcher mutates a
store, so its contents always reflect exactly the deltas it has applied.
"""

from __future__ import annotations

import threading

from kubemirror.models.resources import ResourceKey, ResourceKind, ResourceObject
from kubemirror.observability.metrics import store_objects


class LocalStore:
    """Keyed cache of ResourceObjects for a single kind."""

    def __init__(self, kind: ResourceKind) -> None:
        self._kind = kind
        self._lock = threading.Lock()
        self._items: dict[ResourceKey, ResourceObject] = {}

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def get(self, namespace: str, name: str) -> ResourceObject | None:
        return self.get_by_key(ResourceKey(self._kind, namespace, name))

    def get_by_key(self, key: ResourceKey) -> ResourceObject | None:
        with self._lock:
            return self._items.get(key)

    def list(self, namespace: str | None = None) -> list[ResourceObject]:
        """Objects in the store, optionally restricted to one namespace."""
        with self._lock:
            objects = list(self._items.values())
        if namespace is not None:
            objects = [obj for obj in objects if obj.namespace == namespace]
        return sorted(objects, key=lambda obj: obj.key)

    def keys(self) -> list[ResourceKey]:
        with self._lock:
            return sorted(self._items)

    def snapshot(self) -> dict[ResourceKey, ResourceObject]:
        """A point-in-time copy of the whole store."""
        with self._lock:
            return dict(self._items)

    # ------------------------------------------------------------------
    # Dispatcher-only write path
    # ------------------------------------------------------------------

    def _upsert(self, obj: ResourceObject) -> ResourceObject | None:
        """Insert or replace *obj*; returns the object it replaced."""
        with self._lock:
            previous = self._items.get(obj.key)
            self._items[obj.key] = obj
            size = len(self._items)
        store_objects.labels(kind=str(self._kind)).set(size)
        return previous

    def _discard(self, key: ResourceKey) -> ResourceObject | None:
        """Remove *key*; absence is not an error.  Returns the removed object."""
        with self._lock:
            previous = self._items.pop(key, None)
            size = len(self._items)
        store_objects.labels(kind=str(self._kind)).set(size)
        return previous
