"""Prometheus metrics for kubemirror.

Every metric here is a write-only mirror of state owned elsewhere (the
dispatcher's counters, the watchers' states, the queues' depth).  Nothing
in the core reads these values back.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

events_total = Counter(
    "kubemirror_events_total",
    "Deltas applied to the local store, by kind and event type.",
    ["kind", "event"],
)

handler_errors_total = Counter(
    "kubemirror_handler_errors_total",
    "Exceptions raised by registered event handlers.",
    ["kind", "event"],
)

watch_restarts_total = Counter(
    "kubemirror_watch_restarts_total",
    "Watch sessions restarted, by reason (expired, transient, closed).",
    ["kind", "reason"],
)

dropped_deltas_total = Counter(
    "kubemirror_dropped_deltas_total",
    "Deltas rejected because their queue was already closed.",
    ["kind"],
)

delta_queue_depth = Gauge(
    "kubemirror_delta_queue_depth",
    "Distinct keys currently buffered in the delta queue.",
    ["kind"],
)

store_objects = Gauge(
    "kubemirror_store_objects",
    "Objects held in the local store.",
    ["kind"],
)

watcher_synced = Gauge(
    "kubemirror_watcher_synced",
    "1 once the watcher has completed its initial listing, else 0.",
    ["kind"],
)
