"""Tests for StopController: signal, callbacks, guarded waits and task join."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from kubemirror.lifecycle.stop import StopController, StopRequested


class TestSignal:
    def test_stop_is_idempotent_and_keeps_first_cause(self) -> None:
        stop = StopController()
        first = RuntimeError("first")
        stop.stop(cause=first)
        stop.stop(cause=RuntimeError("second"))
        stop.stop()
        assert stop.stopped
        assert stop.failure is first

    def test_cause_after_plain_stop_is_recorded(self) -> None:
        stop = StopController()
        stop.stop()
        error = RuntimeError("late")
        stop.stop(cause=error)
        assert stop.failure is error

    def test_callbacks_run_once(self) -> None:
        stop = StopController()
        callback = MagicMock()
        stop.on_stop(callback)
        stop.stop()
        stop.stop()
        callback.assert_called_once_with()

    def test_callback_registered_after_stop_runs_immediately(self) -> None:
        stop = StopController()
        stop.stop()
        callback = MagicMock()
        stop.on_stop(callback)
        callback.assert_called_once_with()

    def test_failing_callback_does_not_block_others(self) -> None:
        stop = StopController()
        after = MagicMock()
        stop.on_stop(MagicMock(side_effect=RuntimeError("boom")))
        stop.on_stop(after)
        stop.stop()
        after.assert_called_once_with()


class TestGuard:
    async def test_returns_result_when_work_finishes_first(self) -> None:
        stop = StopController()

        async def work() -> int:
            return 42

        assert await stop.guard(work()) == 42

    async def test_propagates_work_errors(self) -> None:
        stop = StopController()

        async def work() -> None:
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await stop.guard(work())

    async def test_stop_cancels_pending_work(self) -> None:
        stop = StopController()
        cancelled = asyncio.Event()

        async def work() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        guarded = asyncio.create_task(stop.guard(work()))
        await asyncio.sleep(0.01)
        stop.stop()

        with pytest.raises(StopRequested):
            await asyncio.wait_for(guarded, timeout=1.0)
        assert cancelled.is_set()

    async def test_already_stopped_raises_without_running_work(self) -> None:
        stop = StopController()
        stop.stop()
        ran = False

        async def work() -> None:
            nonlocal ran
            ran = True

        with pytest.raises(StopRequested):
            await stop.guard(work())
        assert ran is False

    async def test_iterate_stops_between_items(self) -> None:
        stop = StopController()
        source: asyncio.Queue[int] = asyncio.Queue()

        async def items():
            while True:
                yield await source.get()

        seen: list[int] = []

        async def consume() -> None:
            async for item in stop.iterate(items()):
                seen.append(item)

        consumer = asyncio.create_task(consume())
        source.put_nowait(1)
        source.put_nowait(2)
        await asyncio.sleep(0.01)
        stop.stop()

        with pytest.raises(StopRequested):
            await asyncio.wait_for(consumer, timeout=1.0)
        assert seen == [1, 2]


class TestSleep:
    async def test_sleep_elapses_without_stop(self) -> None:
        assert await StopController().sleep(0.01) is False

    async def test_stop_interrupts_sleep(self) -> None:
        stop = StopController()
        sleeper = asyncio.create_task(stop.sleep(10))
        await asyncio.sleep(0.01)
        stop.stop()
        assert await asyncio.wait_for(sleeper, timeout=1.0) is True


class TestTasks:
    async def test_wait_joins_spawned_tasks(self) -> None:
        stop = StopController()
        finished: list[str] = []

        async def component(name: str) -> None:
            await stop.wait_stopped()
            finished.append(name)

        stop.spawn(component("a"), name="a")
        stop.spawn(component("b"), name="b")
        stop.stop()
        await asyncio.wait_for(stop.wait(), timeout=1.0)
        assert sorted(finished) == ["a", "b"]

    async def test_crashed_component_triggers_stop_with_cause(self) -> None:
        stop = StopController()
        error = RuntimeError("component bug")

        async def crash() -> None:
            raise error

        stop.spawn(crash(), name="crash")
        await asyncio.wait_for(stop.wait(), timeout=1.0)
        assert stop.stopped
        assert stop.failure is error

    async def test_concurrent_waiters_all_return(self) -> None:
        stop = StopController()
        stop.spawn(stop.wait_stopped(), name="idle")
        waiters = [asyncio.create_task(stop.wait()) for _ in range(3)]
        await asyncio.sleep(0.01)
        stop.stop()
        await asyncio.wait_for(asyncio.gather(*waiters), timeout=1.0)
