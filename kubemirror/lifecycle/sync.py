"""Startup sync barrier across all registered watchers."""

from __future__ import annotations

import asyncio
import time

import structlog

from kubemirror.lifecycle.stop import StopController
from kubemirror.models.resources import WatcherState
from kubemirror.observability.metrics import watcher_synced

_log = structlog.get_logger(component="lifecycle.sync")


class SyncCoordinator:
    """Tracks each watcher's state and whether it has ever synced.

    A watcher is synced once both of these have happened: it reached
    WATCHING after a full listing, and ``mark_applied`` reported that the
    dispatcher put that whole listing into the local store.  The flag is
    a latch: a later relist (LISTING again) does not unsync it.

    Waiters block on an asyncio.Event that is swapped out on every state
    transition, so ``wait_for_sync`` wakes only when something changed.
    """

    def __init__(self) -> None:
        self._states: dict[str, WatcherState] = {}
        self._watched: set[str] = set()
        self._applied: set[str] = set()
        self._synced: set[str] = set()
        self._changed = asyncio.Event()

    def register(self, name: str) -> None:
        if name in self._states:
            raise ValueError(f"Watcher {name!r} is already registered")
        self._states[name] = WatcherState.NOT_STARTED
        watcher_synced.labels(kind=name).set(0)

    def set_state(self, name: str, state: WatcherState) -> None:
        """Record a transition.  Only the owning watcher calls this."""
        previous = self._states.get(name)
        if previous is None:
            raise KeyError(f"Watcher {name!r} is not registered")
        if previous == state:
            return
        self._states[name] = state
        _log.debug("watcher state changed", watcher=name, previous=str(previous), state=str(state))
        if state == WatcherState.WATCHING:
            self._watched.add(name)
            self._latch(name)
        self._notify()

    def mark_applied(self, name: str) -> None:
        """Record that *name*'s initial listing is in the local store.  Idempotent."""
        if name not in self._states:
            raise KeyError(f"Watcher {name!r} is not registered")
        if name in self._applied:
            return
        self._applied.add(name)
        self._latch(name)
        self._notify()

    def _latch(self, name: str) -> None:
        if name in self._synced or name not in self._watched or name not in self._applied:
            return
        self._synced.add(name)
        watcher_synced.labels(kind=name).set(1)
        _log.info("watcher synced", watcher=name)

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def state(self, name: str) -> WatcherState:
        return self._states[name]

    def states(self) -> dict[str, WatcherState]:
        return dict(self._states)

    def has_synced(self, name: str) -> bool:
        return name in self._synced

    @property
    def all_synced(self) -> bool:
        return all(name in self._synced for name in self._states)

    async def wait_for_sync(self, timeout: float | None, stop: StopController) -> bool:
        """Block until every registered watcher has synced.

        Returns:
            True  -- every watcher completed its initial listing.
            False -- *stop* fired or *timeout* seconds elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.all_synced:
                return True
            if stop.stopped:
                return False
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                pending = sorted(name for name in self._states if name not in self._synced)
                _log.warning("sync deadline elapsed", pending=pending, timeout=timeout)
                return False
            changed = asyncio.ensure_future(self._changed.wait())
            stopped = asyncio.ensure_future(stop.wait_stopped())
            try:
                await asyncio.wait({changed, stopped}, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            finally:
                changed.cancel()
                stopped.cancel()
