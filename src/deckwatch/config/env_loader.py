"""Environment variable helpers for configuration files and child processes."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from dotenv import dotenv_values, load_dotenv

from deckwatch.lib.errors import ConfigError

# ${VAR} or ${VAR:-default}
ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def substitute_env_vars(text: str, env: Mapping[str, str] | None = None) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` placeholders in text.

    Args:
        text: Raw configuration text
        env: Variables to read from (defaults to ``os.environ``)

    Returns:
        Text with every placeholder substituted

    Raises:
        ConfigError: If a placeholder without a default names an unset variable
    """
    source = os.environ if env is None else env

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = source.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(
            name,
            f"Environment variable '{name}' is not set and has no default",
        )

    return ENV_PATTERN.sub(_replace, text)


def load_env_file(path: Path, override: bool = True) -> dict[str, str]:
    """Load a ``.env`` file into ``os.environ`` and return its values.

    A missing file is not an error; an empty mapping is returned.
    """
    if not path.is_file():
        return {}
    load_dotenv(path, override=override)
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


def build_child_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment for a child process: ours plus ``extra``."""
    env = dict(os.environ)
    if extra:
        env.update(extra)
    return env
