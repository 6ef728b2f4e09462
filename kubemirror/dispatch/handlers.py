"""Handler interface exposed to consumers of the mirror.

Handlers run on the dispatcher's critical path: a slow handler throttles
the whole pipeline for its collection.  Callbacks may be plain functions or
coroutines.  They must not call ``ResourceMirror.stop()`` themselves.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from kubemirror.models.resources import ConfigMapObject, DeltaType, PodObject, ResourceObject

if TYPE_CHECKING:
    from kubemirror.dispatch.dispatcher import EventCounters

_log = structlog.get_logger(component="dispatch.events")

Callback = Callable[..., Awaitable[Any] | Any]


class ResourceEventHandler(ABC):
    """Receives add/update/delete notifications for one collection."""

    @abstractmethod
    def on_add(self, obj: ResourceObject) -> Awaitable[Any] | Any:
        """Called after *obj* was inserted into the local store."""

    @abstractmethod
    def on_update(self, old: ResourceObject, new: ResourceObject) -> Awaitable[Any] | Any:
        """Called after *old* was replaced by *new* in the local store."""

    @abstractmethod
    def on_delete(self, obj: ResourceObject) -> Awaitable[Any] | Any:
        """Called after *obj* (its last known state) was removed."""


@dataclass
class HandlerFuncs(ResourceEventHandler):
    """Adapts up to three optional callables to ResourceEventHandler."""

    add: Callback | None = None
    update: Callback | None = None
    delete: Callback | None = None

    def on_add(self, obj: ResourceObject) -> Awaitable[Any] | Any:
        if self.add is not None:
            return self.add(obj)
        return None

    def on_update(self, old: ResourceObject, new: ResourceObject) -> Awaitable[Any] | Any:
        if self.update is not None:
            return self.update(old, new)
        return None

    def on_delete(self, obj: ResourceObject) -> Awaitable[Any] | Any:
        if self.delete is not None:
            return self.delete(obj)
        return None


def _describe(obj: ResourceObject) -> dict[str, str]:
    fields = {"namespace": obj.namespace, "name": obj.name, "resource_version": obj.resource_version}
    match obj:
        case PodObject():
            fields["phase"] = obj.phase
        case ConfigMapObject():
            fields["data_keys"] = ",".join(obj.data_keys)
    return fields


class EventLogHandler(ResourceEventHandler):
    """Logs every notification with the running per-kind count.

    The count is read from the dispatcher's counters, which have already
    been incremented for the delta being delivered.
    """

    def __init__(self, counters: EventCounters) -> None:
        self._counters = counters

    def _count(self, obj: ResourceObject, event_type: DeltaType) -> int:
        return self._counters.get(obj.kind, event_type)

    def on_add(self, obj: ResourceObject) -> None:
        _log.info(f"added {obj.kind}", count=self._count(obj, DeltaType.ADD), **_describe(obj))

    def on_update(self, old: ResourceObject, new: ResourceObject) -> None:
        _log.info(
            f"updated {new.kind}",
            count=self._count(new, DeltaType.UPDATE),
            old_resource_version=old.resource_version,
            **_describe(new),
        )

    def on_delete(self, obj: ResourceObject) -> None:
        _log.info(f"deleted {obj.kind}", count=self._count(obj, DeltaType.DELETE), **_describe(obj))
