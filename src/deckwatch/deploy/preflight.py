"""Preflight gate for cloud deployments.

The external consistency checker is opaque: only its exit code matters.
"""

from __future__ import annotations

from pathlib import Path

from deckwatch.deploy.supervisor import ProcessSupervisor
from deckwatch.lib.errors import (
    PreflightFailedError,
    ProcessExitError,
    ProcessSpawnError,
)
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.config import PreflightConfig
from deckwatch.models.deployment import DeploymentTarget

logger = get_logger(__name__)


class PreflightValidator:
    """Runs the configured checker and turns failure into PreflightFailedError."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        config: PreflightConfig,
        cwd: Path,
    ) -> None:
        """Initialize the gate."""
        self._supervisor = supervisor
        self._config = config
        self._cwd = cwd

    @property
    def enabled(self) -> bool:
        """True when a checker command is configured."""
        return self._config.command is not None

    async def check(self) -> None:
        """Run the checker; return on exit code zero.

        Raises:
            PreflightFailedError: On a non-zero exit, a timeout, or if the
                checker cannot be launched
        """
        if self._config.command is None:
            logger.debug("Preflight check disabled")
            return

        try:
            await self._supervisor.run(
                self._config.command,
                target=DeploymentTarget.CLOUD,
                service="preflight",
                cwd=self._cwd,
                timeout=self._config.timeout,
            )
        except ProcessExitError as exc:
            raise PreflightFailedError(exc.exit_code) from exc
        except ProcessSpawnError as exc:
            raise PreflightFailedError(None, detail=exc.message) from exc
        logger.info("Preflight check passed")
