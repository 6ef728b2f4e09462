"""kubemirror command-line interface.

Commands:
    run     -- Run the mirror in the foreground (env config, flag overrides).
    status  -- Print the status of a running instance via its HTTP API.
"""

from __future__ import annotations

import asyncio
import json

import click
import httpx

from kubemirror.config import load_config, validate_kinds, validate_log_level, validate_namespace
from kubemirror.models.resources import ResourceKind

_DEFAULT_URL = "http://localhost:8080"


@click.group()
@click.version_option(package_name="kubemirror")
def cli() -> None:
    """Mirror Kubernetes collections in memory via list-then-watch."""


@cli.command()
@click.option(
    "--kind",
    "kinds",
    multiple=True,
    type=click.Choice([k.value for k in ResourceKind]),
    help="Collection to mirror (repeatable). Defaults to KUBEMIRROR_KINDS.",
)
@click.option("--namespace", default=None, help="Only mirror this namespace.")
@click.option("--label-selector", default=None, help="Label selector, e.g. app=web.")
@click.option("--sync-timeout", type=click.IntRange(min=1), default=None, help="Seconds to wait for the initial sync.")
@click.option("--log-level", default=None, help="debug, info, warning or error.")
@click.option("--no-api", is_flag=True, help="Do not serve the status API.")
def run(
    kinds: tuple[str, ...],
    namespace: str | None,
    label_selector: str | None,
    sync_timeout: int | None,
    log_level: str | None,
    no_api: bool,
) -> None:
    """Run the mirror until SIGINT/SIGTERM."""
    from kubemirror.app import main

    try:
        config = load_config()
        if kinds:
            config.mirror.kinds = validate_kinds(",".join(kinds))
        if namespace is not None:
            config.kubernetes.namespace = validate_namespace(namespace)
        if label_selector is not None:
            config.kubernetes.label_selector = label_selector
        if sync_timeout is not None:
            config.mirror.sync_timeout_seconds = sync_timeout
        if log_level is not None:
            config.log.level = validate_log_level(log_level)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    if no_api:
        config.api.enabled = False

    asyncio.run(main(config))


@cli.command()
@click.option("--url", default=_DEFAULT_URL, show_default=True, help="Base URL of a running kubemirror.")
@click.option("--timeout", type=float, default=5.0, show_default=True, help="HTTP timeout in seconds.")
def status(url: str, timeout: float) -> None:
    """Print watcher states, store sizes and event counters."""
    try:
        response = httpx.get(f"{url.rstrip('/')}/api/v1/status", timeout=timeout)
    except httpx.HTTPError as exc:
        raise click.ClickException(f"cannot reach {url}: {exc}") from exc
    if not response.is_success:
        raise click.ClickException(f"status request failed with HTTP {response.status_code}")
    click.echo(json.dumps(response.json(), indent=2, sort_keys=True))
