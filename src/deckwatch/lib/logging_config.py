"""Application logging setup for deckwatch.

All modules obtain their logger through :func:`get_logger` so that the
``deckwatch`` namespace can be configured in one place by the CLI.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that drown out orchestration output at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "asyncio")

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name."""
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for CLI and server use.

    Args:
        verbose: Enable DEBUG output, including third-party loggers.
        quiet: Only emit WARNING and above.
    """
    global _configured

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
