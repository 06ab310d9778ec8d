"""Public view of supervised processes."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from deckwatch.models.deployment import DeploymentTarget


class ProcessResult(BaseModel):
    """Exit result of a supervised process."""

    model_config = ConfigDict(frozen=True)

    exit_code: int | None
    signal: int | None = None
    killed: bool = False
    ended_at: datetime

    @property
    def succeeded(self) -> bool:
        """True when the process exited with code zero."""
        return self.exit_code == 0


class ProcessInfo(BaseModel):
    """Snapshot of a tracked process, safe to hand out to callers."""

    model_config = ConfigDict(frozen=True)

    id: str
    target: DeploymentTarget
    service: str
    command: list[str]
    pid: int | None
    started_at: datetime
    port: int | None = None
    status: str = "running"
    result: ProcessResult | None = None
