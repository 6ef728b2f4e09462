"""Dispatch package: delta application, event counters and handler interface."""

from kubemirror.dispatch.dispatcher import EventCounters, EventDispatcher
from kubemirror.dispatch.handlers import EventLogHandler, HandlerFuncs, ResourceEventHandler

__all__ = [
    "EventCounters",
    "EventDispatcher",
    "EventLogHandler",
    "HandlerFuncs",
    "ResourceEventHandler",
]
