"""Lifecycle primitives: the shared stop signal and the startup sync barrier."""

from kubemirror.lifecycle.stop import StopController, StopRequested
from kubemirror.lifecycle.sync import SyncCoordinator

__all__ = ["StopController", "StopRequested", "SyncCoordinator"]
