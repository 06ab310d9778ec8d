"""Entry point for the ``deckwatch`` command."""

from __future__ import annotations

import click

from deckwatch import __version__
from deckwatch.cli.commands.deploy import (
    cloud,
    health,
    local,
    logs,
    processes,
    status,
    test_endpoints,
)
from deckwatch.cli.commands.serve import serve
from deckwatch.lib.logging_config import setup_logging


@click.group()
@click.version_option(__version__, prog_name="deckwatch")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """deckwatch - deployment orchestration and live monitoring.

    Run 'deckwatch serve' to start the orchestrator, then control it with
    the other commands from any terminal.
    """
    ctx.ensure_object(dict)
    # Operator commands only surface warnings unless asked; serve configures its own
    if ctx.invoked_subcommand != "serve":
        setup_logging(verbose=verbose, quiet=not verbose)


main.add_command(serve)
main.add_command(health)
main.add_command(status)
main.add_command(processes)
main.add_command(logs)
main.add_command(test_endpoints)
main.add_command(local)
main.add_command(cloud)


if __name__ == "__main__":  # pragma: no cover
    main()
