"""Process-wide cancellation signal and component join.

StopController is the single shared stop signal for every watcher, queue
and dispatcher loop.  ``stop()`` only raises the signal; ``wait()`` joins
the component tasks so shutdown completion is observable.

Components check the signal cooperatively at each blocking point through
``guard()``, ``iterate()`` and ``sleep()``.  When the signal fires while a
component is suspended in one of those helpers, the pending await is
cancelled and ``StopRequested`` is raised in its place so the component can
unwind through its normal ``finally`` blocks.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from typing import Any, TypeVar

import structlog

_log = structlog.get_logger(component="lifecycle.stop")

_T = TypeVar("_T")


class StopRequested(Exception):
    """Raised inside a component when the stop signal fired during a wait."""


class StopController:
    """Shared cancellation signal plus a registry of component tasks."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._tasks: list[asyncio.Task[Any]] = []
        self._failure: BaseException | None = None

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    @property
    def failure(self) -> BaseException | None:
        """The fatal error that triggered shutdown, if any."""
        return self._failure

    def on_stop(self, callback: Callable[[], None]) -> None:
        """Run *callback* when stop is raised (immediately if already raised)."""
        if self.stopped:
            callback()
            return
        self._callbacks.append(callback)

    def stop(self, cause: BaseException | None = None) -> None:
        """Raise the stop signal.  Idempotent; only the first cause is kept.

        Returns without waiting for components to drain; use ``wait()``.
        """
        if cause is not None and self._failure is None:
            self._failure = cause
        if self.stopped:
            return
        if cause is not None:
            _log.error("stop requested after fatal error", error=str(cause), error_type=type(cause).__name__)
        else:
            _log.info("stop requested")
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                _log.error("stop callback raised", error=str(exc))

    async def wait_stopped(self) -> None:
        """Block until the stop signal has been raised."""
        await self._event.wait()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Start *coro* as a component task that ``wait()`` will join."""
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_task_done)
        self._tasks.append(task)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        # A crashed component leaves the pipeline inconsistent: shut down.
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.error(
                "component exited with error", task=task.get_name(), error=str(exc), error_type=type(exc).__name__
            )
            self.stop(cause=exc)

    async def wait(self) -> None:
        """Block until every spawned component task has exited.

        Safe to call from several tasks at once.  Component crashes are
        logged when they happen and never re-raised here.
        """
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def guard(self, aw: Awaitable[_T]) -> _T:
        """Await *aw* unless the stop signal fires first.

        Raises:
            StopRequested: if stop was raised before *aw* completed.
        """
        if self.stopped:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise StopRequested
        work: asyncio.Future[_T] = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stopper.cancel()
        if work.done():
            return work.result()
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await work
        raise StopRequested

    async def iterate(self, source: AsyncIterator[_T]) -> AsyncIterator[_T]:
        """Yield from *source*, checking the stop signal before every item."""
        while True:
            try:
                item = await self.guard(anext(source))
            except StopAsyncIteration:
                return
            yield item

    async def sleep(self, delay: float) -> bool:
        """Sleep up to *delay* seconds.  Returns True if stop was raised."""
        if self.stopped:
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        return self.stopped
