"""Event dispatcher: the single writer of local stores and event counters.

For each registered collection the dispatcher runs one loop that pops
deltas from the collection's DeltaQueue and, per delta:

1. classifies it against the current store entry,
2. applies it to the LocalStore,
3. increments the (kind, event type) counter,
4. invokes the collection's handler.

Deltas for one collection are processed strictly one at a time, so handler
invocation order always matches store mutation order for every key.
Collections run concurrently on the event loop.  Handler exceptions are
caught and counted; they never stop the loop.
"""

from __future__ import annotations

import asyncio
import threading

import structlog

from kubemirror.cache.delta_queue import DeltaQueue
from kubemirror.cache.store import LocalStore
from kubemirror.dispatch.handlers import ResourceEventHandler
from kubemirror.models.resources import Delta, DeltaType, ResourceKind, ResourceObject
from kubemirror.observability.logging import resource_fields
from kubemirror.observability.metrics import events_total, handler_errors_total

_log = structlog.get_logger(component="dispatch.dispatcher")

CounterKey = tuple[ResourceKind, DeltaType]


class EventCounters:
    """Per (kind, event type) delivery counts, written only by the dispatcher.

    Reads go through a lock so any thread can take a consistent snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[CounterKey, int] = {}
        self._handler_errors: dict[CounterKey, int] = {}

    def get(self, kind: ResourceKind, event_type: DeltaType) -> int:
        with self._lock:
            return self._counts.get((kind, event_type), 0)

    def snapshot(self) -> dict[CounterKey, int]:
        with self._lock:
            return dict(self._counts)

    def handler_errors(self) -> dict[CounterKey, int]:
        with self._lock:
            return dict(self._handler_errors)

    def _increment(self, kind: ResourceKind, event_type: DeltaType) -> None:
        with self._lock:
            self._counts[(kind, event_type)] = self._counts.get((kind, event_type), 0) + 1
        events_total.labels(kind=str(kind), event=str(event_type)).inc()

    def _record_handler_error(self, kind: ResourceKind, event_type: DeltaType) -> None:
        with self._lock:
            key = (kind, event_type)
            self._handler_errors[key] = self._handler_errors.get(key, 0) + 1
        handler_errors_total.labels(kind=str(kind), event=str(event_type)).inc()


class EventDispatcher:
    """Drains delta queues into local stores and handlers."""

    def __init__(self) -> None:
        self._queues: dict[ResourceKind, DeltaQueue] = {}
        self._stores: dict[ResourceKind, LocalStore] = {}
        self._handlers: dict[ResourceKind, ResourceEventHandler] = {}
        self._counters = EventCounters()

    @property
    def counters(self) -> EventCounters:
        return self._counters

    def register(self, kind: ResourceKind, queue: DeltaQueue) -> LocalStore:
        """Attach the queue for *kind* and create its store."""
        if kind in self._queues:
            raise ValueError(f"Collection {kind} is already registered")
        self._queues[kind] = queue
        self._stores[kind] = LocalStore(kind)
        return self._stores[kind]

    def set_handler(self, kind: ResourceKind, handler: ResourceEventHandler) -> None:
        """Register the single handler for *kind*."""
        if kind in self._handlers:
            raise ValueError(f"A handler is already registered for {kind}")
        self._handlers[kind] = handler

    def store(self, kind: ResourceKind) -> LocalStore:
        return self._stores[kind]

    @property
    def kinds(self) -> list[ResourceKind]:
        return list(self._queues)

    async def run(self, kind: ResourceKind) -> None:
        """Process deltas for *kind* until its queue is closed and drained."""
        queue = self._queues[kind]
        _log.debug("dispatcher loop started", kind=str(kind))
        processed = 0
        while True:
            delta = await queue.pop()
            if delta is None:
                break
            try:
                await self.process(delta)
            finally:
                queue.task_done(delta.key)
            processed += 1
        _log.info("dispatcher loop drained", kind=str(kind), processed=processed)

    async def process(self, delta: Delta) -> None:
        """Apply one delta to its store, count it, and notify the handler."""
        kind = delta.key.kind
        store = self._stores[kind]
        current = store.get_by_key(delta.key)

        if delta.type == DeltaType.DELETE:
            if current is None:
                # The Add it would undo never reached the store.
                _log.debug("delete for absent key ignored", **resource_fields(delta.key))
                return
            store._discard(delta.key)
            self._counters._increment(kind, DeltaType.DELETE)
            await self._notify(kind, DeltaType.DELETE, delta.old_object or current)
            return

        new = delta.new_object
        if new is None:
            _log.warning("delta without new object ignored", delta_type=str(delta.type), **resource_fields(delta.key))
            return
        store._upsert(new)
        if current is None:
            self._counters._increment(kind, DeltaType.ADD)
            await self._notify(kind, DeltaType.ADD, new)
        else:
            # An Add for a key already held is delivered as an Update.
            old = delta.old_object if delta.type == DeltaType.UPDATE and delta.old_object else current
            self._counters._increment(kind, DeltaType.UPDATE)
            await self._notify(kind, DeltaType.UPDATE, old, new)

    async def _notify(self, kind: ResourceKind, event_type: DeltaType, *objects: ResourceObject) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            return
        try:
            match event_type:
                case DeltaType.ADD:
                    result = handler.on_add(*objects)
                case DeltaType.UPDATE:
                    result = handler.on_update(*objects)
                case _:
                    result = handler.on_delete(*objects)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:  # noqa: BLE001
            self._counters._record_handler_error(kind, event_type)
            _log.error(
                "event handler raised",
                delta_type=str(event_type),
                error=str(exc),
                error_type=type(exc).__name__,
                **resource_fields(objects[-1].key),
            )
