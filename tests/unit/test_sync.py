"""Tests for the SyncCoordinator startup barrier."""

from __future__ import annotations

import asyncio

import pytest

from kubemirror.lifecycle.stop import StopController
from kubemirror.lifecycle.sync import SyncCoordinator
from kubemirror.models.resources import WatcherState


def _coordinator(*names: str) -> SyncCoordinator:
    sync = SyncCoordinator()
    for name in names:
        sync.register(name)
    return sync


def _sync_watcher(sync: SyncCoordinator, name: str) -> None:
    sync.set_state(name, WatcherState.LISTING)
    sync.mark_applied(name)
    sync.set_state(name, WatcherState.WATCHING)


class TestStates:
    def test_registered_watcher_starts_not_started(self) -> None:
        sync = _coordinator("Pod")
        assert sync.state("Pod") == WatcherState.NOT_STARTED
        assert not sync.has_synced("Pod")

    def test_duplicate_registration_rejected(self) -> None:
        sync = _coordinator("Pod")
        with pytest.raises(ValueError):
            sync.register("Pod")

    def test_unregistered_state_change_rejected(self) -> None:
        sync = _coordinator()
        with pytest.raises(KeyError):
            sync.set_state("Pod", WatcherState.LISTING)

    def test_listing_alone_does_not_sync(self) -> None:
        sync = _coordinator("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        assert not sync.has_synced("Pod")

    def test_watching_alone_does_not_sync(self) -> None:
        sync = _coordinator("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        sync.set_state("Pod", WatcherState.WATCHING)
        assert not sync.has_synced("Pod")

    def test_applied_listing_alone_does_not_sync(self) -> None:
        sync = _coordinator("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        sync.mark_applied("Pod")
        assert not sync.has_synced("Pod")

        sync.set_state("Pod", WatcherState.WATCHING)
        assert sync.has_synced("Pod")

    def test_unregistered_mark_applied_rejected(self) -> None:
        sync = _coordinator()
        with pytest.raises(KeyError):
            sync.mark_applied("Pod")

    def test_synced_is_a_latch(self) -> None:
        sync = _coordinator("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        sync.set_state("Pod", WatcherState.WATCHING)
        sync.mark_applied("Pod")
        sync.mark_applied("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        sync.set_state("Pod", WatcherState.ERROR)
        assert sync.has_synced("Pod")
        assert sync.state("Pod") == WatcherState.ERROR

    def test_all_synced_requires_every_watcher(self) -> None:
        sync = _coordinator("Pod", "ConfigMap")
        _sync_watcher(sync, "Pod")
        assert not sync.all_synced
        _sync_watcher(sync, "ConfigMap")
        assert sync.all_synced
        assert sync.states() == {"Pod": WatcherState.WATCHING, "ConfigMap": WatcherState.WATCHING}


class TestWaitForSync:
    async def test_returns_true_when_already_synced(self) -> None:
        sync = _coordinator("Pod")
        _sync_watcher(sync, "Pod")
        assert await sync.wait_for_sync(0.1, StopController()) is True

    async def test_wakes_when_last_watcher_syncs(self) -> None:
        sync = _coordinator("Pod", "ConfigMap")
        waiter = asyncio.create_task(sync.wait_for_sync(2.0, StopController()))

        _sync_watcher(sync, "Pod")
        await asyncio.sleep(0.01)
        assert not waiter.done()

        _sync_watcher(sync, "ConfigMap")
        assert await asyncio.wait_for(waiter, timeout=1.0) is True

    async def test_returns_false_after_deadline(self) -> None:
        sync = _coordinator("Pod")
        sync.set_state("Pod", WatcherState.LISTING)
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await sync.wait_for_sync(0.05, StopController()) is False
        assert loop.time() - started < 1.0

    async def test_returns_false_when_stopped(self) -> None:
        sync = _coordinator("Pod")
        stop = StopController()
        waiter = asyncio.create_task(sync.wait_for_sync(None, stop))
        await asyncio.sleep(0.01)

        stop.stop()
        assert await asyncio.wait_for(waiter, timeout=1.0) is False

    async def test_no_watchers_is_trivially_synced(self) -> None:
        assert await _coordinator().wait_for_sync(0.0, StopController()) is True
