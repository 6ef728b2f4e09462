"""Application bootstrap for kubemirror.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> K8s client -> mirror (+ event log
handlers) -> status API -> sync barrier.

Shutdown is graceful: the mirror is asked to stop, its dispatchers drain
what was already buffered, then the API server and the K8s client are
closed.  A fatal watcher error (bad credentials, missing collection) shuts
the whole process down and is reported as a non-zero exit.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from kubemirror.config import load_config
from kubemirror.models.config import KubeMirrorConfig
from kubemirror.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubemirror.mirror import ResourceMirror

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class SyncTimeoutError(Exception):
    """The mirror did not reach a consistent state before the deadline."""


class KubeMirrorApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is idempotent: calling it on an app that was never started
    (or already stopped) is safe.
    """

    def __init__(self, config: KubeMirrorConfig | None = None) -> None:
        self.config: KubeMirrorConfig | None = config
        self.mirror: ResourceMirror | None = None

        self._k8s_client: Any = None
        self._rest_server: Any = None
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._stopping = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises:
            _ComponentError: a mandatory component could not start.
            SyncTimeoutError: the caches did not sync within the timeout.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubemirror starting", version=_kubemirror_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Mirror ---------------------------------------------------
        await self._start_mirror()

        # --- 5. Status API ------------------------------------------------
        await self._start_rest()

        self._running = True

        # --- 6. Sync barrier ---------------------------------------------
        await self._wait_for_sync()
        self._log.info("kubemirror started", kinds=[str(k) for k in self.config.mirror.kinds])

    async def _start_k8s_client(self) -> None:
        """Initialise kubernetes-asyncio from in-cluster config or kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
            from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config(config_file=self.config.kubernetes.kubeconfig or None)
                self._log.info(
                    "k8s client configured from kubeconfig",
                    kubeconfig=self.config.kubernetes.kubeconfig or "default",
                )
            self._k8s_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_mirror(self) -> None:
        """Build the ResourceMirror, attach event log handlers and start it."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting mirror")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            from kubemirror.collector.remote import KubernetesRemoteStore
            from kubemirror.dispatch.handlers import EventLogHandler
            from kubemirror.mirror import ResourceMirror

            k8s = self.config.kubernetes
            settings = self.config.mirror
            mirror = ResourceMirror(
                KubernetesRemoteStore(k8s_client.CoreV1Api(self._k8s_client)),
                namespace=k8s.namespace or None,
                label_selector=k8s.label_selector or None,
                queue_size=settings.queue_size,
                watch_timeout=k8s.watch_timeout_seconds,
                backoff_initial=settings.backoff_initial_seconds,
                backoff_max=settings.backoff_max_seconds,
            )
            if settings.log_events:
                for kind in settings.kinds:
                    mirror.set_handler(kind, EventLogHandler(mirror.counters))
            mirror.start(*settings.kinds)
            self.mirror = mirror

            task = asyncio.create_task(self._watch_for_failure(mirror), name="mirror-supervisor")
            self._background_tasks.append(task)
            self._log.info("mirror started")
        except Exception as exc:
            raise _ComponentError("mirror", exc) from exc

    async def _watch_for_failure(self, mirror: ResourceMirror) -> None:
        """Stop the app once the mirror has exited on its own."""
        await mirror.wait()
        if self._running and not self._stopping:
            log = self._log or get_logger("app")
            if mirror.failure is not None:
                log.critical("mirror failed", error=str(mirror.failure), error_type=type(mirror.failure).__name__)
            self._running = False

    async def _start_rest(self) -> None:
        """Start the uvicorn status API server."""
        assert self._log is not None
        assert self.config is not None
        if not self.config.api.enabled:
            self._log.info("status api disabled (api.enabled=false)")
            return
        self._log.debug("starting status api")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kubemirror.api import create_app

            fastapi_app = create_app(mirror=self.mirror, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("status api started", port=self.config.api.port)
        except Exception as exc:
            # The API is an observer; the mirror keeps running without it.
            self._log.warning("status api failed to start", error=str(exc))
            self._rest_server = None

    async def _wait_for_sync(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.mirror is not None
        timeout = self.config.mirror.sync_timeout_seconds
        if not await self.mirror.wait_for_sync(timeout=timeout):
            if self.mirror.failure is not None:
                raise _ComponentError("mirror", self.mirror.failure)  # type: ignore[arg-type]
            raise SyncTimeoutError(f"timed out waiting for caches to sync after {timeout}s")
        self._log.info("caches synced", stores={str(k): len(self.mirror.store(k)) for k in self.mirror.kinds})

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order.

        Each step is wrapped independently; a failure in one does not
        prevent the others from running.
        """
        if self._stopping or (not self._running and self._log is None):
            return
        self._stopping = True

        log = self._log or get_logger("app")
        log.info("kubemirror shutting down")
        self._running = False

        if self.mirror is not None:
            self.mirror.stop()
            try:
                await asyncio.wait_for(self.mirror.wait(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("mirror drain timed out", timeout=_SHUTDOWN_GRACE_SECONDS)

        if self._rest_server is not None:
            self._rest_server.should_exit = True

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_k8s_client()
        log.info("kubemirror stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._k8s_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._k8s_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._k8s_client = None


def _kubemirror_version() -> str:
    from kubemirror import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: KubeMirrorConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeMirrorApp(config)
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        # Block until a signal arrives or the mirror exits on its own
        while app.running and not shutdown.is_set():
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    except SyncTimeoutError as exc:
        get_logger("app").critical(str(exc))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()

    if app.mirror is not None and app.mirror.failure is not None:
        raise SystemExit(1)
