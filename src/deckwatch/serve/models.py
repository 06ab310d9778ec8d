"""Request and response models for the control server."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deckwatch.models.deployment import (
    ApiHealth,
    DatabaseHealth,
    DeploymentStatus,
)
from deckwatch.models.endpoint import EndpointTest
from deckwatch.models.log_entry import LogEntry
from deckwatch.models.process import ProcessInfo


class ServerState(str, Enum):
    """Lifecycle of the control server."""

    INITIALIZING = "initializing"
    READY = "ready"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class LocalStartRequest(BaseModel):
    """Body of ``POST /deployment/local/start``."""

    model_config = ConfigDict(extra="ignore")

    service: str = Field(default="all", min_length=1)


class CloudStartRequest(BaseModel):
    """Body of ``POST /deployment/cloud/start``."""

    model_config = ConfigDict(extra="ignore")

    service: str = Field(default="all", min_length=1)
    environment: str | None = Field(
        default=None, description="Target environment; configured default if omitted"
    )


class TestEndpointsRequest(BaseModel):
    """Body of ``POST /test-endpoints``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    base_url: str | None = Field(default=None, alias="baseUrl")


class CommandResponse(BaseModel):
    """Accepted control command."""

    success: bool = True
    message: str
    target: str
    state: str
    process_id: str | None = None
    port: int | None = None
    deployment_id: str | None = None


class ErrorResponse(BaseModel):
    """Rejected or failed request."""

    success: bool = False
    error: str
    message: str
    reason: str | None = None
    details: list[dict[str, Any]] | None = None


class StatusResponse(BaseModel):
    """Coarse state of every target and health component."""

    local: str
    cloud: str
    database: str
    api: str


class DetailedStatusResponse(BaseModel):
    """Full committed records, for clients that need more than labels."""

    local: DeploymentStatus
    cloud: DeploymentStatus
    database: DatabaseHealth
    api: ApiHealth


class ValidationResponse(BaseModel):
    """Outcome of an endpoint validation batch."""

    success: bool = True
    healthy: bool
    base_url: str
    passed: int
    total: int
    results: list[EndpointTest]
    deployment_id: str | None = None
    stale: bool = False


class LogsResponse(BaseModel):
    """Tail of a log channel."""

    channel: str
    logs: list[LogEntry]
    count: int


class ProcessesResponse(BaseModel):
    """Processes currently tracked by the supervisor."""

    processes: list[ProcessInfo]
    count: int


class HealthResponse(BaseModel):
    """Liveness of the control server itself."""

    status: str
    server_state: ServerState
    observers: int
    uptime_seconds: float
    started_at: datetime | None = None
