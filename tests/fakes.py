"""In-memory stand-ins for the Kubernetes API server.

FakeRemoteStore implements the RemoteStore ABC from scripted listings and
watch streams so pipeline tests never touch a real cluster.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from kubemirror.collector.remote import ListResult, RemoteStore, WatchEvent, WatchEventType
from kubemirror.models.resources import ResourceKind

# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_pod(
    name: str,
    version: int | str = 1,
    namespace: str = "default",
    phase: str = "Running",
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": str(version),
            "labels": labels or {},
        },
        "spec": {"nodeName": "node-1", "containers": [{"name": "app", "image": "nginx:1.25"}]},
        "status": {"phase": phase},
    }


def make_config_map(
    name: str,
    version: int | str = 1,
    namespace: str = "default",
    data: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": str(version)},
        "data": data if data is not None else {"key": "value"},
    }


def added(obj: dict[str, Any]) -> WatchEvent:
    return WatchEvent(WatchEventType.ADDED, obj)


def modified(obj: dict[str, Any]) -> WatchEvent:
    return WatchEvent(WatchEventType.MODIFIED, obj)


def deleted(obj: dict[str, Any]) -> WatchEvent:
    return WatchEvent(WatchEventType.DELETED, obj)


def bookmark(version: int | str) -> WatchEvent:
    return WatchEvent(WatchEventType.BOOKMARK, {"metadata": {"resourceVersion": str(version)}})


# ---------------------------------------------------------------------------
# Fake remote store
# ---------------------------------------------------------------------------

_CLOSE = object()


@dataclass
class _Script:
    events: list[WatchEvent | Exception]
    close: bool


@dataclass
class FakeRemoteStore(RemoteStore):
    """Scripted list-then-watch source.

    * ``add_listing`` / ``add_list_error`` queue responses for ``list``;
      once the queue is empty, the last listing is served again.
    * ``add_stream`` queues one watch session: its events (or exceptions to
      raise) are replayed in order; with ``close=False`` the stream then
      stays open and serves ``emit``-ed events until ``close_stream``.
    """

    list_delay: float = 0.0
    list_calls: list[ResourceKind] = field(default_factory=list)
    watch_calls: list[tuple[ResourceKind, str]] = field(default_factory=list)
    _listings: dict[ResourceKind, list[ListResult | Exception]] = field(default_factory=lambda: defaultdict(list))
    _last_listing: dict[ResourceKind, ListResult] = field(default_factory=dict)
    _scripts: dict[ResourceKind, list[_Script]] = field(default_factory=lambda: defaultdict(list))
    _live: dict[ResourceKind, asyncio.Queue[Any]] = field(default_factory=dict)

    def add_listing(self, kind: ResourceKind, items: list[dict[str, Any]], resource_version: int | str) -> None:
        self._listings[kind].append(ListResult(items=items, resource_version=str(resource_version)))

    def add_list_error(self, kind: ResourceKind, exc: Exception) -> None:
        self._listings[kind].append(exc)

    def add_stream(self, kind: ResourceKind, *events: WatchEvent | Exception, close: bool = False) -> None:
        self._scripts[kind].append(_Script(list(events), close))

    def _live_queue(self, kind: ResourceKind) -> asyncio.Queue[Any]:
        if kind not in self._live:
            self._live[kind] = asyncio.Queue()
        return self._live[kind]

    def emit(self, kind: ResourceKind, event: WatchEvent | Exception) -> None:
        """Deliver *event* to the currently open (or next) live stream."""
        self._live_queue(kind).put_nowait(event)

    def close_stream(self, kind: ResourceKind) -> None:
        self._live_queue(kind).put_nowait(_CLOSE)

    async def list(
        self,
        kind: ResourceKind,
        *,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> ListResult:
        self.list_calls.append(kind)
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        queued = self._listings[kind]
        if queued:
            response = queued.pop(0)
            if isinstance(response, Exception):
                raise response
            self._last_listing[kind] = response
            return response
        return self._last_listing.get(kind, ListResult(items=[], resource_version="1"))

    @contextlib.asynccontextmanager
    async def watch(
        self,
        kind: ResourceKind,
        *,
        resource_version: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        timeout_seconds: int | None = None,
    ) -> AsyncIterator[AsyncIterator[WatchEvent]]:
        self.watch_calls.append((kind, resource_version))
        scripts = self._scripts[kind]
        script = scripts.pop(0) if scripts else _Script([], close=False)
        yield self._stream(kind, script)

    async def _stream(self, kind: ResourceKind, script: _Script) -> AsyncIterator[WatchEvent]:
        for item in script.events:
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item
        if script.close:
            return
        live = self._live_queue(kind)
        while True:
            item = await live.get()
            if item is _CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll *predicate* until it holds, failing the test after *timeout*."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
