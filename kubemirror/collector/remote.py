"""Remote store protocol and its Kubernetes implementation.

A RemoteStore offers list-then-watch over one collection:

* ``list`` returns a full snapshot plus the version token it was taken at;
* ``watch`` opens an incremental stream of changes after a token.  The
  stream may end normally (server-side timeout) or fail with
  ResourceExpiredError when the token is too old to resume from.

Failures are classified into the exception hierarchy below so the watcher
can decide between backing off, relisting and shutting down.
"""

from __future__ import annotations

import contextlib
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterator
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import aiohttp
import structlog

from kubemirror.models.resources import ResourceKind

_log = structlog.get_logger(component="collector.remote")


class RemoteError(Exception):
    """Base class for classified remote store failures."""


class TransientRemoteError(RemoteError):
    """Network blips, throttling and server errors.  Retried with backoff."""


class ResourceExpiredError(RemoteError):
    """The resume token is no longer served; a fresh list is required."""


class FatalRemoteError(RemoteError):
    """Authentication, authorization or collection identity failures."""


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ListResult:
    """Snapshot of a collection and the version token it reflects."""

    items: list[dict[str, Any]]
    resource_version: str


@dataclass(frozen=True)
class WatchEvent:
    """One raw change notification from the watch stream."""

    type: WatchEventType
    object: dict[str, Any] = field(default_factory=dict)

    @property
    def resource_version(self) -> str:
        return str((self.object.get("metadata") or {}).get("resourceVersion") or "")


class RemoteStore(ABC):
    """List-then-watch access to remote resource collections."""

    @abstractmethod
    async def list(
        self,
        kind: ResourceKind,
        *,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> ListResult:
        """Fetch the full collection."""

    @abstractmethod
    def watch(
        self,
        kind: ResourceKind,
        *,
        resource_version: str,
        namespace: str | None = None,
        label_selector: str | None = None,
        timeout_seconds: int | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[WatchEvent]]:
        """Open a change stream starting after *resource_version*."""


def classify_status(status: int | None, reason: str) -> RemoteError:
    """Map an HTTP status from the API server onto the error taxonomy."""
    if status == 410:
        return ResourceExpiredError(reason or "resource version expired")
    if status in (401, 403):
        return FatalRemoteError(f"access denied ({status}): {reason}")
    if status == 404:
        return FatalRemoteError(f"collection not found ({status}): {reason}")
    return TransientRemoteError(f"api error ({status}): {reason}")


# CoreV1Api method names: (all namespaces, single namespace)
_LIST_METHODS: dict[ResourceKind, tuple[str, str]] = {
    ResourceKind.POD: ("list_pod_for_all_namespaces", "list_namespaced_pod"),
    ResourceKind.CONFIG_MAP: ("list_config_map_for_all_namespaces", "list_namespaced_config_map"),
}


class KubernetesRemoteStore(RemoteStore):
    """RemoteStore backed by the kubernetes-asyncio CoreV1Api.

    Args:
        api: A configured ``CoreV1Api``.  Defaults to one built on the
             module-level configuration loaded by the bootstrap.
    """

    def __init__(self, api: Any = None) -> None:
        if api is None:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            api = k8s_client.CoreV1Api()
        self._api = api

    def _list_method(self, kind: ResourceKind, namespace: str | None) -> Any:
        methods = _LIST_METHODS.get(kind)
        if methods is None:
            raise FatalRemoteError(f"kind {kind!r} is not served by this store")
        all_namespaces, namespaced = methods
        if namespace:
            return getattr(self._api, namespaced)
        return getattr(self._api, all_namespaces)

    @staticmethod
    def _call_kwargs(namespace: str | None, label_selector: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if namespace:
            kwargs["namespace"] = namespace
        if label_selector:
            kwargs["label_selector"] = label_selector
        return kwargs

    async def list(
        self,
        kind: ResourceKind,
        *,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> ListResult:
        method = self._list_method(kind, namespace)
        with _translate_errors():
            response = await method(**self._call_kwargs(namespace, label_selector))
        sanitize = self._api.api_client.sanitize_for_serialization
        items = [sanitize(item) for item in response.items or []]
        resource_version = str(response.metadata.resource_version or "")
        _log.debug("listed collection", kind=str(kind), items=len(items), resource_version=resource_version)
        return ListResult(items=items, resource_version=resource_version)

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
        from kubernetes_asyncio import watch as k8s_watch  # type: ignore[import-untyped]

        method = self._list_method(kind, namespace)
        kwargs = self._call_kwargs(namespace, label_selector)
        kwargs["resource_version"] = resource_version
        kwargs["allow_watch_bookmarks"] = True
        if timeout_seconds:
            kwargs["timeout_seconds"] = timeout_seconds

        watcher = k8s_watch.Watch()
        async with watcher.stream(method, **kwargs) as stream:
            yield _events(stream)


async def _events(stream: AsyncIterator[dict[str, Any]]) -> AsyncIterator[WatchEvent]:
    """Translate kubernetes-asyncio watch dicts into WatchEvents."""
    while True:
        with _translate_errors():
            try:
                raw = await anext(stream)
            except StopAsyncIteration:
                return
        event_type = str(raw.get("type", "")).upper()
        obj = raw.get("raw_object") or {}
        if event_type == WatchEventType.ERROR:
            raise classify_status(obj.get("code"), str(obj.get("message", "")))
        try:
            parsed = WatchEventType(event_type)
        except ValueError:
            _log.warning("unknown watch event type skipped", event_type=event_type)
            continue
        yield WatchEvent(type=parsed, object=obj)


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    """Re-raise client library failures as RemoteError subclasses."""
    from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

    try:
        yield
    except ApiException as exc:
        raise classify_status(exc.status, str(exc.reason or "")) from exc
    except (aiohttp.ClientError, TimeoutError, OSError) as exc:
        raise TransientRemoteError(f"{type(exc).__name__}: {exc}") from exc
