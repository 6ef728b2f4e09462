"""Resource, delta and watcher-state data structures.

The set of mirrored kinds is closed: every object crossing the Watcher
boundary is decoded once into the ResourceObject subclass registered for
its kind, and downstream components never re-inspect the raw payload to
decide what it is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar


class ResourceKind(StrEnum):
    """Kubernetes kinds that can be mirrored."""

    POD = "Pod"
    CONFIG_MAP = "ConfigMap"


class DeltaType(StrEnum):
    """Observed state transition for a single key."""

    ADD = "Add"
    UPDATE = "Update"
    DELETE = "Delete"


class WatcherState(StrEnum):
    """Lifecycle of a ResourceWatcher."""

    NOT_STARTED = "NotStarted"
    LISTING = "Listing"
    WATCHING = "Watching"
    ERROR = "Error"
    STOPPED = "Stopped"


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identity of a mirrored object within its collection."""

    kind: ResourceKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


def newer_version(current: str | None, candidate: str) -> str:
    """Return whichever of two version tokens is the most recent.

    Kubernetes resourceVersions are numeric in practice; when both tokens
    parse as integers they are compared numerically, otherwise the
    candidate (the most recently observed token) wins.
    """
    if not current:
        return candidate
    if current.isdigit() and candidate.isdigit():
        return candidate if int(candidate) >= int(current) else current
    return candidate


@dataclass(frozen=True)
class ResourceObject:
    """An immutable snapshot of one remote object.

    Subclasses exist per ResourceKind; use ``from_raw`` to build the right
    one from a decoded API payload.
    """

    kind: ClassVar[ResourceKind]

    namespace: str
    name: str
    resource_version: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.namespace, self.name)

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.raw.get("metadata", {}).get("labels") or {})

    @classmethod
    def from_raw(cls, kind: ResourceKind | str, raw: dict[str, Any]) -> ResourceObject:
        """Decode *raw* into the subclass registered for *kind*.

        Raises:
            ValueError: if *kind* is not a mirrored kind.
        """
        object_type = _OBJECT_TYPES.get(ResourceKind(kind))
        if object_type is None:
            raise ValueError(f"No object type registered for kind {kind!r}")
        metadata = raw.get("metadata") or {}
        return object_type(
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata.get("name") or ""),
            resource_version=str(metadata.get("resourceVersion") or ""),
            raw=raw,
        )


@dataclass(frozen=True)
class PodObject(ResourceObject):
    """A mirrored v1.Pod."""

    kind: ClassVar[ResourceKind] = ResourceKind.POD

    @property
    def phase(self) -> str:
        return str((self.raw.get("status") or {}).get("phase") or "")

    @property
    def node_name(self) -> str:
        return str((self.raw.get("spec") or {}).get("nodeName") or "")


@dataclass(frozen=True)
class ConfigMapObject(ResourceObject):
    """A mirrored v1.ConfigMap."""

    kind: ClassVar[ResourceKind] = ResourceKind.CONFIG_MAP

    @property
    def data(self) -> dict[str, str]:
        return dict(self.raw.get("data") or {})

    @property
    def data_keys(self) -> list[str]:
        return sorted(self.data)


_OBJECT_TYPES: dict[ResourceKind, type[ResourceObject]] = {
    ResourceKind.POD: PodObject,
    ResourceKind.CONFIG_MAP: ConfigMapObject,
}


@dataclass(frozen=True)
class Delta:
    """One observed state transition for a key.

    Add carries only ``new_object``, Delete only ``old_object`` (the last
    known state), Update carries both.
    """

    key: ResourceKey
    type: DeltaType
    new_object: ResourceObject | None = None
    old_object: ResourceObject | None = None

    @property
    def object(self) -> ResourceObject | None:
        """The object a handler sees: the new state, or the last state on Delete."""
        if self.type == DeltaType.DELETE:
            return self.old_object
        return self.new_object

    @classmethod
    def added(cls, obj: ResourceObject) -> Delta:
        return cls(obj.key, DeltaType.ADD, new_object=obj)

    @classmethod
    def updated(cls, old: ResourceObject | None, new: ResourceObject) -> Delta:
        return cls(new.key, DeltaType.UPDATE, new_object=new, old_object=old)

    @classmethod
    def deleted(cls, obj: ResourceObject) -> Delta:
        return cls(obj.key, DeltaType.DELETE, old_object=obj)
