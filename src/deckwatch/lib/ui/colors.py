"""ANSI color helpers for rendering log entries in the terminal."""

from deckwatch.lib.ui.terminal import is_tty


class ANSIColors:
    """ANSI escape codes keyed by the log severities deckwatch emits."""

    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    DIM = "\033[2m"
    RESET = "\033[0m"


SEVERITY_COLORS: dict[str, str] = {
    "info": ANSIColors.BLUE,
    "success": ANSIColors.GREEN,
    "warning": ANSIColors.YELLOW,
    "error": ANSIColors.RED,
}


def colorize(text: str, color: str, force_tty: bool | None = None) -> str:
    """Wrap text in a color code when writing to a terminal.

    Args:
        text: Text to colorize.
        color: ANSI color code to apply (e.g., ANSIColors.GREEN).
        force_tty: Override TTY detection (for testing). None uses auto-detection.

    Returns:
        Colorized text if in TTY mode, plain text otherwise.
    """
    use_colors = force_tty if force_tty is not None else is_tty()
    if not use_colors:
        return text
    return f"{color}{text}{ANSIColors.RESET}"


def colorize_severity(text: str, severity: str, force_tty: bool | None = None) -> str:
    """Colorize text using the color assigned to a log severity."""
    color = SEVERITY_COLORS.get(severity)
    if color is None:
        return text
    return colorize(text, color, force_tty=force_tty)
