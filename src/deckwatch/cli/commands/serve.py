"""CLI command for running the orchestrator server.

Implements the 'deckwatch serve' command, which loads deckwatch.yaml and
serves the control routes and the event stream with uvicorn.
"""

from __future__ import annotations

import asyncio
import sys

import click

from deckwatch.lib.errors import ConfigError
from deckwatch.lib.logging_config import get_logger, setup_logging
from deckwatch.models.config import OrchestratorConfig

logger = get_logger(__name__)


@click.command()
@click.argument(
    "config_file",
    type=click.Path(dir_okay=False),
    required=False,
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to listen on (default: from config, 3012)",
)
@click.option(
    "--host",
    "-h",
    type=str,
    default=None,
    help="Host to bind to (default: from config, 127.0.0.1)",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
def serve(
    config_file: str | None,
    port: int | None,
    host: str | None,
    debug: bool,
) -> None:
    """Start the deployment orchestrator.

    CONFIG_FILE is the path to deckwatch.yaml (default: ./deckwatch.yaml,
    built-in defaults if it does not exist).

    Example:

        deckwatch serve

        deckwatch serve ops/deckwatch.yaml --port 4000
    """
    setup_logging(verbose=debug)

    logger.info(
        f"Serve command invoked: config={config_file}, "
        f"port={port}, host={host}, debug={debug}"
    )

    try:
        from deckwatch.config.loader import ConfigLoader

        config = ConfigLoader().load(config_file)
        overrides = {}
        if host:
            overrides["host"] = host
        if port:
            overrides["port"] = port
        if overrides:
            server_config = config.server.model_copy(update=overrides)
            config = config.model_copy(update={"server": server_config})

        asyncio.run(_run_server(config, debug))

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho(
            "Error: Failed to load orchestrator configuration", fg="red", err=True
        )
        click.echo(f"  {str(e)}", err=True)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Server interrupted by user (Ctrl+C)")
        click.echo()
        click.secho("Server stopped.", fg="yellow")
        sys.exit(130)


async def _run_server(config: OrchestratorConfig, debug: bool) -> None:
    """Run the orchestrator under uvicorn until interrupted.

    The application lifespan starts the server and, on shutdown, terminates
    every tracked process before the loop exits.
    """
    import uvicorn

    from deckwatch.serve.server import OrchestratorServer

    server = OrchestratorServer(config, debug=debug)
    app = server.create_app()

    _display_startup_info(config)

    uvicorn_config = uvicorn.Config(
        app=app,
        host=server.host,
        port=server.port,
        log_level="debug" if debug else "info",
    )
    await uvicorn.Server(uvicorn_config).serve()


def _display_startup_info(config: OrchestratorConfig) -> None:
    """Display server startup information."""
    host, port = config.server.host, config.server.port
    click.echo()
    click.secho("=" * 60, fg="cyan")
    click.secho("  deckwatch orchestrator", fg="cyan", bold=True)
    click.secho("=" * 60, fg="cyan")
    click.echo()
    click.echo(f"  URL:          http://{host}:{port}")
    click.echo(f"  Working dir:  {config.working_dir}")
    click.echo(f"  Local port:   {config.local.port}")
    preflight = " ".join(config.preflight.command or []) or "disabled"
    click.echo(f"  Preflight:    {preflight}")
    click.echo()
    click.secho("  Endpoints:", bold=True)
    click.echo("    GET  /status                   Coarse status")
    click.echo("    POST /deployment/local/start   Start local services")
    click.echo("    POST /deployment/local/stop    Stop local services")
    click.echo("    POST /deployment/local/restart Restart local services")
    click.echo("    POST /deployment/cloud/start   Start cloud deployment")
    click.echo("    POST /deployment/cloud/stop    Stop cloud deployment")
    click.echo("    POST /deployment/cloud/restart Restart cloud deployment")
    click.echo("    POST /test-endpoints           Validate endpoints")
    click.echo("    GET  /deployment/logs/{ch}     Log tail (local|cloud|all)")
    click.echo("    GET  /processes                Tracked processes")
    click.echo("    WS   /ws                       Log and state stream")
    click.echo()
    click.secho("  Press Ctrl+C to stop", fg="yellow")
    click.secho("=" * 60, fg="cyan")
    click.echo()
