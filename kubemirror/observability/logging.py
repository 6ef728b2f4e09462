"""Structured logging configuration using structlog.

All kubemirror components log through structlog with a bound ``component``.
Third-party libraries that use stdlib logging (uvicorn, kubernetes_asyncio,
aiohttp) are routed through the same JSON renderer so the process emits a
single log format.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from kubemirror.models.resources import ResourceKey

# Libraries that are chatty at DEBUG and never useful below WARNING here.
_NOISY_LOGGERS = ("kubernetes_asyncio", "aiohttp.access", "urllib3")


def setup_logging(level: str = "info") -> None:
    """Configure structlog (and stdlib logging) for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]


def resource_fields(key: ResourceKey) -> dict[str, str]:
    """Log context identifying a single mirrored object."""
    return {"kind": str(key.kind), "namespace": key.namespace, "name": key.name}
