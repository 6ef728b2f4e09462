"""Core data structures for kubemirror."""

from kubemirror.models.config import KubeMirrorConfig
from kubemirror.models.resources import (
    ConfigMapObject,
    Delta,
    DeltaType,
    PodObject,
    ResourceKey,
    ResourceKind,
    ResourceObject,
    WatcherState,
)

__all__ = [
    "ConfigMapObject",
    "Delta",
    "DeltaType",
    "KubeMirrorConfig",
    "PodObject",
    "ResourceKey",
    "ResourceKind",
    "ResourceObject",
    "WatcherState",
]
