"""Log entry model shared by the ring buffer, broadcast and HTTP surfaces."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from deckwatch.models.deployment import DeploymentTarget


class Severity(str, Enum):
    """Severity of a deployment log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogEntry(BaseModel):
    """Immutable, timestamped line in a channel's log.

    Attributes:
        timestamp: UTC time the entry was created
        channel: Deployment target the entry belongs to
        severity: info, success, warning or error
        message: Free-text message
        service: Originating service label ("system" for orchestrator notes)
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    channel: DeploymentTarget
    severity: Severity = Severity.INFO
    message: str
    service: str = "system"
