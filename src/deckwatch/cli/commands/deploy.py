"""Operator CLI commands for a running orchestrator.

Implements 'deckwatch health', 'status', 'processes', 'logs', 'test-endpoints' and the
'local' and 'cloud' command groups. Every command talks to the orchestrator
over HTTP; none of them touches processes directly.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import click

from deckwatch.cli.client import (
    DEFAULT_ORCHESTRATOR_URL,
    OrchestratorAPIError,
    OrchestratorClient,
    OrchestratorConnectionError,
)
from deckwatch.config.defaults import DEFAULT_LOG_LIMIT
from deckwatch.lib.errors import ConfigError, DeckwatchError, EndpointValidationError
from deckwatch.lib.logging_config import get_logger
from deckwatch.lib.ui import colorize_severity
from deckwatch.models.endpoint import EndpointTest

logger = get_logger(__name__)

url_option = click.option(
    "--url",
    envvar="DECKWATCH_URL",
    default=DEFAULT_ORCHESTRATOR_URL,
    show_default=True,
    help="Orchestrator address (env: DECKWATCH_URL)",
)


@contextmanager
def handle_orchestrator_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in operator commands.

    Exit codes:
        1: Orchestrator unreachable
        2: Configuration error
        3: Request rejected or failed by the orchestrator
        130: Interrupted
    """
    try:
        yield
    except OrchestratorConnectionError as e:
        logger.error(f"Connection error: {e}")
        click.secho("Error: Orchestrator unreachable", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(1)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except OrchestratorAPIError as e:
        logger.error(f"Orchestrator error: {e.code}: {e.message}")
        label = f"{e.code} ({e.reason})" if e.reason else e.code
        click.secho(f"Error: {label}", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except DeckwatchError as e:
        logger.error(f"{e.code}: {e.message}")
        click.secho(f"Error: {e.code}", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except KeyboardInterrupt:
        click.echo()
        click.secho("Interrupted.", fg="yellow", err=True)
        sys.exit(130)


def format_log_line(entry: dict[str, Any], force_tty: bool | None = None) -> str:
    """Render a log entry as ``HH:MM:SS [CHANNEL] [service] message``."""
    timestamp = str(entry.get("timestamp", ""))[11:19]
    channel = str(entry.get("channel", "")).upper()
    service = entry.get("service", "system")
    text = f"{timestamp} [{channel}] [{service}] {entry.get('message', '')}"
    return colorize_severity(text, entry.get("severity", "info"), force_tty=force_tty)


def _echo_command_result(result: dict[str, Any]) -> None:
    click.secho(f"✓ {result.get('message', 'OK')}", fg="green")
    click.echo(f"  State:         {result.get('state')}")
    if result.get("process_id"):
        click.echo(f"  Process:       {result['process_id']}")
    if result.get("port"):
        click.echo(f"  Port:          {result['port']}")
    if result.get("deployment_id"):
        click.echo(f"  Deployment:    {result['deployment_id']}")


@click.command()
@url_option
def health(url: str) -> None:
    """Check that the orchestrator itself is up."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        data = client.health()
        healthy = data.get("status") == "healthy"
        click.secho(
            f"Orchestrator {data.get('status', 'unknown')} "
            f"({data.get('server_state', 'unknown')})",
            fg="green" if healthy else "red",
        )
        click.echo(f"  Uptime:        {data.get('uptime_seconds', 0.0):.0f}s")
        click.echo(f"  Observers:     {data.get('observers', 0)}")


@click.command()
@url_option
def status(url: str) -> None:
    """Show the coarse state of both targets, the database and the API."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        data = client.status()
        for key in ("local", "cloud", "database", "api"):
            click.echo(f"  {key + ':':<10} {data.get(key, 'unknown')}")


@click.command()
@url_option
def processes(url: str) -> None:
    """List processes the orchestrator is supervising."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        data = client.processes()
        tracked = data.get("processes", [])
        if not tracked:
            click.echo("No tracked processes.")
            return
        for proc in tracked:
            click.echo(
                f"  {proc['id']}  {proc['target']:<6} {proc['service']:<14} "
                f"pid={proc.get('pid')}  started={proc['started_at']}"
            )


@click.command()
@click.argument(
    "channel", type=click.Choice(["local", "cloud", "all"]), default="all"
)
@click.option(
    "--limit",
    "-n",
    type=click.IntRange(min=1),
    default=DEFAULT_LOG_LIMIT,
    show_default=True,
    help="Number of most recent entries",
)
@url_option
def logs(channel: str, limit: int, url: str) -> None:
    """Print the tail of a log channel (local, cloud or all)."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        data = client.logs(channel, limit)
        for entry in data.get("logs", []):
            click.echo(format_log_line(entry))


@click.command(name="test-endpoints")
@click.argument("base_url", required=False)
@click.option(
    "--strict",
    is_flag=True,
    help="Exit with code 3 when any probe fails",
)
@url_option
def test_endpoints(base_url: str | None, strict: bool, url: str) -> None:
    """Probe the deployed API endpoints.

    BASE_URL defaults to the address of the current cloud deployment.
    """
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        data = client.test_endpoints(base_url)
        results = [EndpointTest(**r) for r in data.get("results", [])]
        for result in results:
            mark = "✓" if result.success else "✗"
            observed = result.status_code if result.error is None else result.error
            line = f"  {mark} {result.method:<6} {result.path}  {observed}"
            click.secho(line, fg="green" if result.success else "red")

        passed, total = data.get("passed", 0), data.get("total", 0)
        summary = f"{passed}/{total} endpoints passed against {data.get('base_url')}"
        if data.get("stale"):
            click.secho(
                f"{summary} (discarded: deployment changed during testing)",
                fg="yellow",
            )
        elif data.get("healthy"):
            click.secho(summary, fg="green")
        else:
            click.secho(summary, fg="red")
            if strict:
                raise EndpointValidationError(
                    [r for r in results if not r.success], total
                )


@click.group(name="local")
def local() -> None:
    """Control the local service launcher."""


@local.command(name="start")
@click.option("--service", "-s", default="all", show_default=True)
@url_option
def local_start(service: str, url: str) -> None:
    """Start local services."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.local_start(service))


@local.command(name="stop")
@url_option
def local_stop(url: str) -> None:
    """Stop local services."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.local_stop())


@local.command(name="restart")
@click.option("--service", "-s", default="all", show_default=True)
@url_option
def local_restart(service: str, url: str) -> None:
    """Stop local services if they are running, then start them."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.local_restart(service))


@click.group(name="cloud")
def cloud() -> None:
    """Control cloud deployments."""


@cloud.command(name="start")
@click.option("--service", "-s", default="all", show_default=True)
@click.option(
    "--environment",
    "-e",
    default=None,
    help="Target environment (default: from orchestrator config)",
)
@url_option
def cloud_start(service: str, environment: str | None, url: str) -> None:
    """Start a cloud deployment."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.cloud_start(service, environment))


@cloud.command(name="stop")
@url_option
def cloud_stop(url: str) -> None:
    """Stop an in-flight cloud deployment.

    Remote changes the deployment tool already applied are not rolled back.
    """
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.cloud_stop())


@cloud.command(name="restart")
@click.option("--service", "-s", default="all", show_default=True)
@click.option(
    "--environment",
    "-e",
    default=None,
    help="Target environment (default: from orchestrator config)",
)
@url_option
def cloud_restart(service: str, environment: str | None, url: str) -> None:
    """Kill an in-flight cloud deployment, if any, and deploy again."""
    with handle_orchestrator_errors(), OrchestratorClient(url) as client:
        _echo_command_result(client.cloud_restart(service, environment))
