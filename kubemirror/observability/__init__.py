"""Logging and metrics for kubemirror."""

from kubemirror.observability.logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
