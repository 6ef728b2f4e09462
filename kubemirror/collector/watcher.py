"""ResourceWatcher: list-then-watch with relist recovery and back-off.

One watcher mirrors one collection.  It keeps its own view of every object
it has emitted (``known``), which is what the local store will contain once
the dispatcher has drained the queue.  Relisting after an expired resume
token diffs the fresh snapshot against that view, so consumers see deletes
for objects that vanished while disconnected and no duplicate adds for
objects that did not change.

The watcher counts as synced once it is WATCHING and the dispatcher has
applied every delta of its first listing (see
``DeltaQueue.mark_populated``).  Back-to-back expirations without any
watch event in between are spaced out with the same back-off as
transient errors.

State machine::

    NOT_STARTED -> LISTING -> WATCHING <-> LISTING (relist)
                      |           |
                      +-> ERROR --+   (transient: back off, retry)
                      +-> ERROR -> STOPPED (fatal: stop everything)
    any -> STOPPED on stop
"""

from __future__ import annotations

import contextlib
import random
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import structlog

from kubemirror.cache.delta_queue import DeltaQueue
from kubemirror.collector.remote import (
    FatalRemoteError,
    ListResult,
    RemoteStore,
    ResourceExpiredError,
    TransientRemoteError,
    WatchEvent,
    WatchEventType,
)
from kubemirror.lifecycle.stop import StopController, StopRequested
from kubemirror.lifecycle.sync import SyncCoordinator
from kubemirror.models.resources import (
    Delta,
    ResourceKey,
    ResourceKind,
    ResourceObject,
    WatcherState,
    newer_version,
)
from kubemirror.observability.metrics import watch_restarts_total

_log = structlog.get_logger(component="collector.watcher")


@dataclass
class Backoff:
    """Capped exponential back-off with proportional jitter."""

    initial: float = 1.0
    maximum: float = 30.0
    factor: float = 2.0
    jitter: float = 0.1
    _attempt: int = field(default=0, init=False, repr=False)

    def next_delay(self) -> float:
        delay = min(self.initial * (self.factor**self._attempt), self.maximum)
        self._attempt += 1
        return delay + random.uniform(0, delay * self.jitter)

    def reset(self) -> None:
        self._attempt = 0

    @property
    def attempts(self) -> int:
        return self._attempt


class ResourceWatcher:
    """Mirrors one remote collection into a DeltaQueue.

    Args:
        kind:            Collection to watch.
        remote:          List-then-watch source.
        queue:           Destination for produced deltas.
        sync:            Coordinator notified of every state transition.
        stop:            Shared stop signal; fatal errors are reported here.
        namespace:       Restrict to one namespace (None = all).
        label_selector:  Optional label selector for list and watch.
        watch_timeout:   Server-side watch timeout in seconds.
        backoff:         Retry policy for transient failures.
    """

    def __init__(
        self,
        kind: ResourceKind,
        remote: RemoteStore,
        queue: DeltaQueue,
        sync: SyncCoordinator,
        stop: StopController,
        *,
        namespace: str | None = None,
        label_selector: str | None = None,
        watch_timeout: int | None = 300,
        backoff: Backoff | None = None,
    ) -> None:
        self._kind = kind
        self._remote = remote
        self._queue = queue
        self._sync = sync
        self._stop = stop
        self._namespace = namespace or None
        self._label_selector = label_selector or None
        self._watch_timeout = watch_timeout
        self._backoff = backoff or Backoff()
        self._known: dict[ResourceKey, ResourceObject] = {}
        self._resource_version: str | None = None
        self._expired_streak = 0
        self._log = _log.bind(kind=str(kind))
        sync.register(self.name)
        queue.on_synced(lambda: sync.mark_applied(self.name))

    @property
    def name(self) -> str:
        return str(self._kind)

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def state(self) -> WatcherState:
        return self._sync.state(self.name)

    @property
    def resource_version(self) -> str | None:
        """The highest version token observed so far."""
        return self._resource_version

    def _set_state(self, state: WatcherState) -> None:
        self._sync.set_state(self.name, state)

    async def run(self) -> None:
        """Feed ``deltas()`` into the queue until stopped."""
        self._log.info("watcher starting", namespace=self._namespace, label_selector=self._label_selector)
        async with contextlib.aclosing(self.deltas()) as deltas:
            async for delta in deltas:
                try:
                    accepted = await self._stop.guard(self._queue.push(delta))
                except StopRequested:
                    break
                if not accepted:
                    break
        self._log.info("watcher stopped", resource_version=self._resource_version)

    async def deltas(self) -> AsyncIterator[Delta]:
        """Produce deltas until stopped or a fatal error occurs."""
        try:
            while not self._stop.stopped:
                try:
                    if self._resource_version is None:
                        if self._expired_streak > 1 and await self._relist_delay():
                            break
                        self._set_state(WatcherState.LISTING)
                        listing = await self._stop.guard(self._list())
                        for delta in self._reconcile(listing):
                            yield delta
                        self._queue.mark_populated()
                        self._resource_version = listing.resource_version
                    async with contextlib.aclosing(self._watch()) as watched:
                        async for delta in watched:
                            yield delta
                    watch_restarts_total.labels(kind=self.name, reason="closed").inc()
                    self._log.debug("watch stream closed; resuming", resource_version=self._resource_version)
                except ResourceExpiredError as exc:
                    watch_restarts_total.labels(kind=self.name, reason="expired").inc()
                    self._expired_streak += 1
                    self._log.info("resume point expired; relisting", error=str(exc), streak=self._expired_streak)
                    self._resource_version = None
                except TransientRemoteError as exc:
                    self._set_state(WatcherState.ERROR)
                    watch_restarts_total.labels(kind=self.name, reason="transient").inc()
                    delay = self._backoff.next_delay()
                    self._log.warning(
                        "transient remote error; backing off",
                        error=str(exc),
                        attempt=self._backoff.attempts,
                        delay_seconds=round(delay, 3),
                    )
                    if await self._stop.sleep(delay):
                        break
                except FatalRemoteError as exc:
                    self._set_state(WatcherState.ERROR)
                    self._log.error("fatal remote error; shutting down", error=str(exc))
                    self._stop.stop(cause=exc)
                    return
        except StopRequested:
            pass
        finally:
            self._set_state(WatcherState.STOPPED)

    async def _relist_delay(self) -> bool:
        """Back off before a repeated relist.  Returns True if stop was raised."""
        delay = self._backoff.next_delay()
        self._log.warning(
            "resume point keeps expiring; backing off before relist",
            streak=self._expired_streak,
            delay_seconds=round(delay, 3),
        )
        return await self._stop.sleep(delay)

    async def _list(self) -> ListResult:
        return await self._remote.list(
            self._kind,
            namespace=self._namespace,
            label_selector=self._label_selector,
        )

    async def _watch(self) -> AsyncIterator[Delta]:
        assert self._resource_version is not None
        stream_cm = self._remote.watch(
            self._kind,
            resource_version=self._resource_version,
            namespace=self._namespace,
            label_selector=self._label_selector,
            timeout_seconds=self._watch_timeout,
        )
        async with stream_cm as events, contextlib.aclosing(self._stop.iterate(events)) as guarded:
            self._set_state(WatcherState.WATCHING)
            async for event in guarded:
                self._backoff.reset()
                self._expired_streak = 0
                if event.resource_version:
                    self._resource_version = newer_version(self._resource_version, event.resource_version)
                delta = self._translate(event)
                if delta is not None:
                    yield delta

    def _translate(self, event: WatchEvent) -> Delta | None:
        if event.type == WatchEventType.BOOKMARK:
            return None
        obj = ResourceObject.from_raw(self._kind, event.object)
        previous = self._known.get(obj.key)
        match event.type:
            case WatchEventType.ADDED | WatchEventType.MODIFIED:
                self._known[obj.key] = obj
                if previous is None:
                    return Delta.added(obj)
                return Delta.updated(previous, obj)
            case WatchEventType.DELETED:
                if self._known.pop(obj.key, None) is None:
                    return None
                return Delta.deleted(obj)
        return None

    def _reconcile(self, listing: ListResult) -> list[Delta]:
        """Diff a fresh listing against the objects already emitted."""
        fresh: dict[ResourceKey, ResourceObject] = {}
        for raw in listing.items:
            obj = ResourceObject.from_raw(self._kind, raw)
            fresh[obj.key] = obj

        deltas: list[Delta] = []
        for key in sorted(set(self._known) - set(fresh)):
            deltas.append(Delta.deleted(self._known[key]))
        for key, obj in fresh.items():
            previous = self._known.get(key)
            if previous is None:
                deltas.append(Delta.added(obj))
            elif previous.resource_version != obj.resource_version:
                deltas.append(Delta.updated(previous, obj))

        relist = bool(self._known)
        self._known = fresh
        self._log.info(
            "relisted collection" if relist else "listed collection",
            items=len(fresh),
            deltas=len(deltas),
            resource_version=listing.resource_version,
        )
        return deltas
