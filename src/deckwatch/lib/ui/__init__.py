"""Terminal helpers used by the deckwatch CLI."""

from deckwatch.lib.ui.colors import ANSIColors, colorize, colorize_severity
from deckwatch.lib.ui.terminal import is_tty

__all__ = [
    "ANSIColors",
    "colorize",
    "colorize_severity",
    "is_tty",
]
