"""Per-collection coalescing delta buffer.

Deltas are keyed by ResourceKey.  While a delta for a key is still waiting
to be consumed, a newly pushed delta for the same key is merged into it
instead of being queued behind it, so the consumer only ever sees the net
transition.  Keys are released in order of first arrival.

All mutation happens in synchronous sections on the event loop, which
serialises the merge step against concurrent pushes and pops.

The queue also tracks its initial population.  Once the producer calls
``mark_populated()`` after pushing its first listing, the queue is synced
as soon as every key buffered or in flight at that moment has been popped
and reported back through ``task_done()``, or cancelled out by a later
delta before anyone popped it.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable

import structlog

from kubemirror.models.resources import Delta, DeltaType, ResourceKey
from kubemirror.observability.logging import resource_fields
from kubemirror.observability.metrics import delta_queue_depth, dropped_deltas_total

_log = structlog.get_logger(component="cache.delta_queue")

_DEFAULT_MAXSIZE = 1000


def coalesce(existing: Delta, incoming: Delta) -> Delta | None:
    """Merge *incoming* into the still-buffered *existing* delta for one key.

    Returns the net delta, or None when the pair cancels out (an object
    that was added and deleted before anyone observed it).
    """
    match (existing.type, incoming.type):
        case (DeltaType.ADD, DeltaType.UPDATE):
            return Delta(existing.key, DeltaType.ADD, new_object=incoming.new_object)
        case (DeltaType.ADD, DeltaType.DELETE):
            return None
        case (DeltaType.UPDATE, DeltaType.UPDATE):
            return Delta(
                existing.key,
                DeltaType.UPDATE,
                new_object=incoming.new_object,
                old_object=existing.old_object,
            )
        case (DeltaType.UPDATE, DeltaType.DELETE):
            return Delta(existing.key, DeltaType.DELETE, old_object=existing.old_object)
        case (DeltaType.DELETE, DeltaType.ADD):
            return Delta(
                existing.key,
                DeltaType.UPDATE,
                new_object=incoming.new_object,
                old_object=existing.old_object,
            )
    # Not produced by a well-behaved watcher; keep the latest transition
    # but remember the earliest state the consumer may still hold.
    return Delta(
        existing.key,
        incoming.type,
        new_object=incoming.new_object,
        old_object=existing.old_object or incoming.old_object,
    )


class DeltaQueue:
    """Bounded, coalescing FIFO of deltas for one collection.

    Args:
        name:    Collection name used in logs and metrics.
        maxsize: Maximum number of distinct buffered keys.  ``push`` blocks
                 when full unless the delta merges into a buffered key.
    """

    def __init__(self, name: str, maxsize: int = _DEFAULT_MAXSIZE) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._name = name
        self._maxsize = maxsize
        self._items: OrderedDict[ResourceKey, Delta] = OrderedDict()
        self._closed = False
        self._not_empty = asyncio.Event()
        self._not_full = asyncio.Event()
        self._not_full.set()
        self._in_flight: set[ResourceKey] = set()
        # None until the initial listing has been pushed.
        self._unsettled: set[ResourceKey] | None = None
        self._synced = False
        self._sync_callbacks: list[Callable[[], None]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_synced(self) -> bool:
        """True once the initial population has been fully consumed."""
        return self._synced

    def on_synced(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the queue syncs (immediately if it already has)."""
        if self._synced:
            callback()
            return
        self._sync_callbacks.append(callback)

    def mark_populated(self) -> None:
        """Record that the initial listing has been fully pushed.  Idempotent."""
        if self._unsettled is not None:
            return
        self._unsettled = set(self._items) | self._in_flight
        _log.debug("delta queue populated", queue=self._name, initial=len(self._unsettled))
        self._check_synced()

    def task_done(self, key: ResourceKey) -> None:
        """Report that the delta popped for *key* has been fully processed."""
        self._in_flight.discard(key)
        self._settle(key)

    def _settle(self, key: ResourceKey) -> None:
        if self._unsettled is None:
            return
        self._unsettled.discard(key)
        self._check_synced()

    def _check_synced(self) -> None:
        if self._synced or self._unsettled is None or self._unsettled:
            return
        self._synced = True
        _log.debug("delta queue synced", queue=self._name)
        callbacks, self._sync_callbacks = self._sync_callbacks, []
        for callback in callbacks:
            callback()

    def __len__(self) -> int:
        return len(self._items)

    def pending(self, key: ResourceKey) -> Delta | None:
        """The buffered delta for *key*, if any."""
        return self._items.get(key)

    def close(self) -> None:
        """Stop accepting pushes.  Buffered deltas remain poppable."""
        if self._closed:
            return
        self._closed = True
        self._not_empty.set()
        self._not_full.set()
        _log.debug("delta queue closed", queue=self._name, buffered=len(self._items))

    async def push(self, delta: Delta) -> bool:
        """Buffer *delta*, merging it with any pending delta for its key.

        Returns False when the queue is closed; the delta is dropped.
        """
        while True:
            if self._closed:
                dropped_deltas_total.labels(kind=self._name).inc()
                _log.debug(
                    "delta dropped after close",
                    queue=self._name,
                    delta_type=str(delta.type),
                    **resource_fields(delta.key),
                )
                return False
            if delta.key in self._items or len(self._items) < self._maxsize:
                self._merge(delta)
                return True
            self._not_full.clear()
            await self._not_full.wait()

    def _merge(self, delta: Delta) -> None:
        existing = self._items.get(delta.key)
        if existing is None:
            self._items[delta.key] = delta
        else:
            merged = coalesce(existing, delta)
            if merged is None:
                del self._items[delta.key]
                self._not_full.set()
                _log.debug("delta pair cancelled out", queue=self._name, **resource_fields(delta.key))
                # Nothing is left to apply for the key unless it is still being processed.
                if delta.key not in self._in_flight:
                    self._settle(delta.key)
            else:
                # Replacing the value keeps the key's original position.
                self._items[delta.key] = merged
        if self._items:
            self._not_empty.set()
        delta_queue_depth.labels(kind=self._name).set(len(self._items))

    async def pop(self) -> Delta | None:
        """Take the oldest buffered delta, blocking until one is available.

        The consumer must call ``task_done(delta.key)`` once it has applied
        the delta.  Returns None once the queue is closed and fully drained.
        """
        while not self._items:
            if self._closed:
                return None
            self._not_empty.clear()
            await self._not_empty.wait()
        key, delta = self._items.popitem(last=False)
        self._in_flight.add(key)
        self._not_full.set()
        delta_queue_depth.labels(kind=self._name).set(len(self._items))
        return delta
