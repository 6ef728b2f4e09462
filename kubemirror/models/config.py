"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubemirror.models.resources import ResourceKind


@dataclass
class KubernetesConfig:
    """Remote API server connection settings."""

    kubeconfig: str = ""
    namespace: str = ""
    label_selector: str = ""
    watch_timeout_seconds: int = 300


@dataclass
class MirrorConfig:
    """Watcher, queue and sync-barrier settings."""

    kinds: list[ResourceKind] = field(default_factory=lambda: [ResourceKind.POD, ResourceKind.CONFIG_MAP])
    sync_timeout_seconds: int = 60
    queue_size: int = 1000
    backoff_initial_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    log_events: bool = True


@dataclass
class APIConfig:
    """Status API configuration."""

    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeMirrorConfig:
    """Top-level kubemirror configuration."""

    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
