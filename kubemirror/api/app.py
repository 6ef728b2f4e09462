"""FastAPI application factory for the kubemirror status API.

Usage::

    from kubemirror.api.app import create_app

    app = create_app(mirror=mirror, config=config)

Every endpoint is a read-only observer of the mirror: it reads stores,
counters and watcher states through their snapshot accessors and never
writes to them.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from kubemirror.models.resources import ResourceKind

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


def create_app(mirror: Any, config: Any = None) -> FastAPI:
    """Create and configure the kubemirror FastAPI application.

    Args:
        mirror: ResourceMirror instance (started or not).
        config: Optional KubeMirrorConfig, reported in /status.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubemirror import __version__

    app = FastAPI(title="kubemirror", version=__version__, docs_url=None, redoc_url=None)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(422, "invalid_request", str(exc.errors()))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        _log.error("unhandled api error", path=request.url.path, error=str(exc))
        return _error(500, "internal_error", "unexpected error while reading mirror state")

    @app.get(f"{_API_PREFIX}/health")
    async def health() -> JSONResponse:
        if mirror.synced and not mirror.stopped:
            return JSONResponse({"status": "ok", "synced": True})
        status = "stopped" if mirror.stopped else "syncing"
        return JSONResponse(status_code=503, content={"status": status, "synced": False})

    @app.get(f"{_API_PREFIX}/status")
    async def status() -> JSONResponse:
        counters: dict[str, dict[str, int]] = {}
        for (kind, event_type), count in mirror.counters.snapshot().items():
            counters.setdefault(str(kind), {})[str(event_type)] = count
        handler_errors: dict[str, dict[str, int]] = {}
        for (kind, event_type), count in mirror.counters.handler_errors().items():
            handler_errors.setdefault(str(kind), {})[str(event_type)] = count

        watchers = {
            name: {"state": str(state), "synced": mirror.has_synced(name)}
            for name, state in mirror.watcher_states().items()
        }
        content: dict[str, Any] = {
            "version": __version__,
            "synced": mirror.synced,
            "stopped": mirror.stopped,
            "failure": str(mirror.failure) if mirror.failure else None,
            "watchers": watchers,
            "stores": {str(kind): len(mirror.store(kind)) for kind in mirror.kinds},
            "counters": counters,
            "handler_errors": handler_errors,
        }
        if config is not None:
            content["namespace"] = config.kubernetes.namespace or None
            content["label_selector"] = config.kubernetes.label_selector or None
        return JSONResponse(content)

    @app.get(f"{_API_PREFIX}/resources/{{kind}}")
    async def resources(kind: str, namespace: str | None = None) -> JSONResponse:
        try:
            parsed = ResourceKind(kind)
        except ValueError:
            return _error(404, "unknown_kind", f"{kind!r} is not a mirrored kind")
        if parsed not in mirror.kinds:
            return _error(404, "unknown_kind", f"{kind} is not being mirrored")
        objects = mirror.store(parsed).list(namespace)
        return JSONResponse(
            {
                "kind": str(parsed),
                "count": len(objects),
                "items": [
                    {"namespace": obj.namespace, "name": obj.name, "resource_version": obj.resource_version}
                    for obj in objects
                ],
            }
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
