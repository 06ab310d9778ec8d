"""Terminal detection utilities."""

import sys


def is_tty() -> bool:
    """Check if stdout is connected to a terminal.

    Used by the CLI to decide whether log lines are colorized or printed
    plain for CI logs and redirects.

    Returns:
        True if stdout is a TTY, False otherwise.
    """
    return sys.stdout.isatty()
