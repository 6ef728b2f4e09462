"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kubemirror.models.config import (
    APIConfig,
    KubeMirrorConfig,
    KubernetesConfig,
    LogConfig,
    MirrorConfig,
)
from kubemirror.models.resources import ResourceKind

# RFC 1123 label, the shape Kubernetes requires for namespace names.
_NAMESPACE_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEMIRROR_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def validate_kinds(value: str) -> list[ResourceKind]:
    kinds: list[ResourceKind] = []
    for part in value.split(","):
        name = part.strip()
        if not name:
            continue
        try:
            kind = ResourceKind(name)
        except ValueError:
            valid = sorted(k.value for k in ResourceKind)
            raise ValueError(f"Invalid kind: {name}. Must be one of {valid}") from None
        if kind not in kinds:
            kinds.append(kind)
    if not kinds:
        raise ValueError("At least one kind must be mirrored")
    return kinds


def validate_namespace(value: str) -> str:
    if value and not _NAMESPACE_RE.match(value):
        raise ValueError(f"Invalid namespace: {value}")
    return value


def validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeMirrorConfig:
    """Load configuration from KUBEMIRROR_* environment variables."""
    backoff_initial = _env_float("BACKOFF_INITIAL", 1.0, min_val=0.1)
    return KubeMirrorConfig(
        kubernetes=KubernetesConfig(
            kubeconfig=os.environ.get("KUBECONFIG", ""),
            namespace=validate_namespace(_env("NAMESPACE", "")),
            label_selector=_env("LABEL_SELECTOR", ""),
            watch_timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=30, max_val=3600),
        ),
        mirror=MirrorConfig(
            kinds=validate_kinds(_env("KINDS", "Pod,ConfigMap")),
            sync_timeout_seconds=_env_int("SYNC_TIMEOUT", 60, min_val=5, max_val=600),
            queue_size=_env_int("QUEUE_SIZE", 1000, min_val=10, max_val=100_000),
            backoff_initial_seconds=backoff_initial,
            backoff_max_seconds=_env_float("BACKOFF_MAX", 30.0, min_val=backoff_initial),
            log_events=_env_bool("LOG_EVENTS", True),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
