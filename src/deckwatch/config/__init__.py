"""Configuration loading for the deckwatch orchestrator.

Main components:
- ConfigLoader: Load and validate deckwatch.yaml
- Environment variable substitution (``${VAR}`` / ``${VAR:-default}``)
- ``.env`` loading for child processes
- Default values
"""

from deckwatch.config.env_loader import load_env_file, substitute_env_vars
from deckwatch.config.loader import ConfigLoader

__all__ = [
    "ConfigLoader",
    "load_env_file",
    "substitute_env_vars",
]
