"""ResourceMirror: lifecycle API over the watch -> queue -> dispatch pipeline.

Usage::

    mirror = ResourceMirror(KubernetesRemoteStore())
    mirror.set_handler(ResourceKind.POD, HandlerFuncs(add=on_pod_added))
    mirror.start(ResourceKind.POD, ResourceKind.CONFIG_MAP)
    if not await mirror.wait_for_sync(timeout=60):
        ...  # the stores are not meaningful
    ...
    mirror.stop()
    await mirror.wait()

``start`` spawns one watcher task and one dispatcher task per collection.
``stop`` raises the shared stop signal and closes every queue; dispatchers
drain what was already buffered and exit.  ``wait`` joins all of them.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from kubemirror.cache.delta_queue import DeltaQueue
from kubemirror.cache.store import LocalStore
from kubemirror.collector.remote import RemoteStore
from kubemirror.collector.watcher import Backoff, ResourceWatcher
from kubemirror.dispatch.dispatcher import EventCounters, EventDispatcher
from kubemirror.dispatch.handlers import ResourceEventHandler
from kubemirror.lifecycle.stop import StopController
from kubemirror.lifecycle.sync import SyncCoordinator
from kubemirror.models.resources import ResourceKind, WatcherState

_log = structlog.get_logger(component="mirror")


class ResourceMirror:
    """In-memory mirror of one or more remote collections.

    Args:
        remote:          List-then-watch source shared by all watchers.
        namespace:       Restrict every collection to one namespace.
        label_selector:  Label selector applied to every list and watch.
        queue_size:      Bound on distinct keys buffered per collection.
        watch_timeout:   Server-side watch timeout in seconds.
        backoff_initial: First retry delay after a transient error.
        backoff_max:     Retry delay cap.
    """

    def __init__(
        self,
        remote: RemoteStore,
        *,
        namespace: str | None = None,
        label_selector: str | None = None,
        queue_size: int = 1000,
        watch_timeout: int | None = 300,
        backoff_initial: float = 1.0,
        backoff_max: float = 30.0,
    ) -> None:
        self._remote = remote
        self._namespace = namespace
        self._label_selector = label_selector
        self._queue_size = queue_size
        self._watch_timeout = watch_timeout
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max

        self._stop = StopController()
        self._sync = SyncCoordinator()
        self._dispatcher = EventDispatcher()
        self._pending_handlers: dict[ResourceKind, ResourceEventHandler] = {}
        self._watchers: dict[ResourceKind, ResourceWatcher] = {}
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_handler(self, kind: ResourceKind, handler: ResourceEventHandler) -> None:
        """Register the handler for *kind*.  At most one per collection.

        Must be called before ``start`` so no delta is delivered unhandled.
        """
        if self._started:
            raise RuntimeError("Handlers must be registered before start()")
        if kind in self._pending_handlers:
            raise ValueError(f"A handler is already registered for {kind}")
        self._pending_handlers[kind] = handler

    def start(self, *kinds: ResourceKind | str) -> None:
        """Spawn watcher and dispatcher tasks for each collection.

        Must be called from a running event loop.  Not restartable.
        """
        if self._started:
            raise RuntimeError("ResourceMirror can only be started once")
        collections = _unique_kinds(kinds)
        if not collections:
            raise ValueError("start() needs at least one collection")
        unused = set(self._pending_handlers) - set(collections)
        if unused:
            raise ValueError(f"Handlers registered for collections not started: {sorted(unused)}")
        self._started = True

        for kind in collections:
            queue = DeltaQueue(str(kind), maxsize=self._queue_size)
            self._dispatcher.register(kind, queue)
            handler = self._pending_handlers.get(kind)
            if handler is not None:
                self._dispatcher.set_handler(kind, handler)
            self._stop.on_stop(queue.close)
            self._watchers[kind] = ResourceWatcher(
                kind,
                self._remote,
                queue,
                self._sync,
                self._stop,
                namespace=self._namespace,
                label_selector=self._label_selector,
                watch_timeout=self._watch_timeout,
                backoff=Backoff(initial=self._backoff_initial, maximum=self._backoff_max),
            )

        for kind in collections:
            self._stop.spawn(self._dispatcher.run(kind), name=f"dispatcher-{kind}")
            self._stop.spawn(self._watchers[kind].run(), name=f"watcher-{kind}")

        _log.info("mirror started", kinds=[str(k) for k in collections])

    async def wait_for_sync(self, timeout: float | None = None) -> bool:
        """Block until every collection's initial listing is in its local store.

        Returns False if the deadline elapses or the mirror is stopped first;
        the stores must not be treated as meaningful in that case.
        """
        if not self._started:
            raise RuntimeError("wait_for_sync() called before start()")
        return await self._sync.wait_for_sync(timeout, self._stop)

    def stop(self) -> None:
        """Request shutdown.  Idempotent; does not wait for the drain."""
        self._stop.stop()

    async def wait(self) -> None:
        """Block until every watcher and dispatcher task has exited."""
        await self._stop.wait()
        _log.info("mirror stopped", failure=str(self.failure) if self.failure else None)

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def stopped(self) -> bool:
        return self._stop.stopped

    @property
    def failure(self) -> BaseException | None:
        """The fatal remote error that shut the mirror down, if any."""
        return self._stop.failure

    @property
    def synced(self) -> bool:
        return self._started and self._sync.all_synced

    @property
    def kinds(self) -> list[ResourceKind]:
        return self._dispatcher.kinds

    @property
    def counters(self) -> EventCounters:
        return self._dispatcher.counters

    def store(self, kind: ResourceKind | str) -> LocalStore:
        return self._dispatcher.store(ResourceKind(kind))

    def has_synced(self, kind: ResourceKind | str) -> bool:
        return self._sync.has_synced(str(ResourceKind(kind)))

    def watcher_states(self) -> dict[str, WatcherState]:
        return self._sync.states()


def _unique_kinds(kinds: Iterable[ResourceKind | str]) -> list[ResourceKind]:
    result: list[ResourceKind] = []
    for kind in kinds:
        parsed = ResourceKind(kind)
        if parsed not in result:
            result.append(parsed)
    return result
