"""Configuration loader for the deckwatch orchestrator.

Configuration precedence (highest to lowest):
1. ``DECKWATCH_*`` environment variables
2. The YAML file (``deckwatch.yaml`` by default), after ``${VAR}``
   substitution
3. Built-in defaults from :mod:`deckwatch.config.defaults`
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from deckwatch.config.defaults import DEFAULT_CONFIG_FILE, ENV_OVERRIDES
from deckwatch.config.env_loader import substitute_env_vars
from deckwatch.lib.errors import ConfigError
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.config import OrchestratorConfig

logger = get_logger(__name__)


def flatten_validation_errors(exc: PydanticValidationError) -> list[tuple[str, str]]:
    """Flatten a Pydantic ValidationError into ``(field_path, message)`` pairs."""
    errors: list[tuple[str, str]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        field_path = ".".join(str(item) for item in loc) if loc else "config"
        msg = error.get("msg", "Unknown error")
        if error.get("type") == "value_error":
            msg = f"{msg} (received: {error.get('input')!r})"
        errors.append((field_path, msg))
    return errors or [("config", "Validation failed with unknown error")]


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


class ConfigLoader:
    """Loads and validates orchestrator configuration from YAML."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Initialize the loader.

        Args:
            env: Environment mapping used for substitution and overrides
                (defaults to ``os.environ``)
        """
        self._env = os.environ if env is None else env

    def parse_yaml(self, path: Path) -> dict[str, Any]:
        """Read a YAML file with environment substitution.

        Raises:
            ConfigError: If the file cannot be read or parsed, or its root
                is not a mapping
        """
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                "config", f"Configuration file not found at {path}: {exc}"
            ) from exc

        substituted = substitute_env_vars(raw_text, self._env)
        try:
            content = yaml.safe_load(substituted)
        except yaml.YAMLError as exc:
            raise ConfigError(
                "yaml_parse", f"Failed to parse YAML file {path}: {exc}"
            ) from exc

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(
                "config",
                f"Top level of {path} must be a mapping, "
                f"got {type(content).__name__}",
            )
        return content

    def apply_env_overrides(self, data: dict[str, Any]) -> dict[str, Any]:
        """Apply ``DECKWATCH_*`` variables on top of file data (in place)."""
        for var_name, path in ENV_OVERRIDES.items():
            value = self._env.get(var_name)
            if value:
                logger.debug(f"Config override from {var_name}: {'.'.join(path)}")
                _set_path(data, path, value)
        return data

    def load(self, path: str | Path | None = None) -> OrchestratorConfig:
        """Load and validate the orchestrator configuration.

        Args:
            path: Explicit configuration file. When omitted,
                ``deckwatch.yaml`` in the current directory is used if present,
                otherwise defaults apply.

        Returns:
            Validated OrchestratorConfig

        Raises:
            ConfigError: If the file is missing (when given explicitly),
                malformed, or fails validation
        """
        data: dict[str, Any] = {}
        base_dir = Path.cwd()

        if path is not None:
            config_path = Path(path)
            data = self.parse_yaml(config_path)
            base_dir = config_path.resolve().parent
        else:
            default_path = Path.cwd() / DEFAULT_CONFIG_FILE
            if default_path.is_file():
                data = self.parse_yaml(default_path)
                logger.debug(f"Loaded configuration from {default_path}")

        self.apply_env_overrides(data)

        try:
            config = OrchestratorConfig.model_validate(data)
        except PydanticValidationError as exc:
            errors = flatten_validation_errors(exc)
            field = errors[0][0]
            message = "; ".join(f"{loc}: {msg}" for loc, msg in errors)
            raise ConfigError(field, message) from exc

        if not config.working_dir.is_absolute():
            config = config.model_copy(
                update={"working_dir": (base_dir / config.working_dir).resolve()}
            )
        return config
