"""Collector package for kubemirror.

Provides the list-then-watch side of the pipeline: the remote store
protocol and the watchers that turn its snapshots and change streams into
deltas.

Submodules
----------
remote  -- RemoteStore ABC, error taxonomy, KubernetesRemoteStore.
watcher -- ResourceWatcher: relist reconciliation, exponential back-off.
"""

from kubemirror.collector.remote import (
    FatalRemoteError,
    KubernetesRemoteStore,
    ListResult,
    RemoteError,
    RemoteStore,
    ResourceExpiredError,
    TransientRemoteError,
    WatchEvent,
    WatchEventType,
)
from kubemirror.collector.watcher import Backoff, ResourceWatcher

__all__ = [
    "Backoff",
    "FatalRemoteError",
    "KubernetesRemoteStore",
    "ListResult",
    "RemoteError",
    "RemoteStore",
    "ResourceExpiredError",
    "ResourceWatcher",
    "TransientRemoteError",
    "WatchEvent",
    "WatchEventType",
]
