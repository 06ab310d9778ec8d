"""deckwatch - Deployment orchestration and live monitoring.

deckwatch supervises a local service launcher and a cloud infrastructure
deployment tool, keeps a serialized per-target state machine for both, and
streams their logs and state to connected observers.

Main features:
- Local and cloud deployment lifecycles with conflict-checked commands
- Bounded per-channel log buffers with live WebSocket fan-out
- Preflight gating and automatic endpoint validation of cloud deployments
- YAML configuration with environment variable substitution
"""

from deckwatch.config.loader import ConfigLoader
from deckwatch.lib.errors import ConfigError, DeckwatchError, StateConflictError

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigError",
    "DeckwatchError",
    "StateConflictError",
]
