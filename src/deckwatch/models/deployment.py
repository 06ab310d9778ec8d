"""Pydantic models for deployment targets and their status records.

Status records are frozen: the state store replaces a record wholesale on
every transition, so a reader always sees a committed value.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deckwatch.models.endpoint import EndpointTest


class DeploymentTarget(str, Enum):
    """Independently supervised deployment lifecycles."""

    LOCAL = "local"
    CLOUD = "cloud"


class LocalState(str, Enum):
    """Lifecycle states of the local service process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class CloudState(str, Enum):
    """Lifecycle states of a cloud deployment attempt."""

    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


# Legal edges per target. Anything else is rejected, never coerced.
LOCAL_TRANSITIONS: dict[LocalState, frozenset[LocalState]] = {
    LocalState.STOPPED: frozenset({LocalState.STARTING}),
    LocalState.STARTING: frozenset(
        {LocalState.RUNNING, LocalState.STOPPING, LocalState.STOPPED}
    ),
    LocalState.RUNNING: frozenset({LocalState.STOPPING, LocalState.STOPPED}),
    LocalState.STOPPING: frozenset({LocalState.STOPPED}),
}

CLOUD_TRANSITIONS: dict[CloudState, frozenset[CloudState]] = {
    CloudState.NOT_DEPLOYED: frozenset({CloudState.DEPLOYING}),
    CloudState.DEPLOYING: frozenset(
        {CloudState.DEPLOYED, CloudState.FAILED, CloudState.NOT_DEPLOYED}
    ),
    CloudState.DEPLOYED: frozenset({CloudState.DEPLOYING}),
    CloudState.FAILED: frozenset({CloudState.DEPLOYING}),
}

IDLE_STATES: dict[DeploymentTarget, frozenset[str]] = {
    DeploymentTarget.LOCAL: frozenset({LocalState.STOPPED.value}),
    DeploymentTarget.CLOUD: frozenset(
        {
            CloudState.NOT_DEPLOYED.value,
            CloudState.DEPLOYED.value,
            CloudState.FAILED.value,
        }
    ),
}


def initial_state(target: DeploymentTarget) -> str:
    """Return the state a target starts in when the orchestrator boots."""
    if target == DeploymentTarget.LOCAL:
        return LocalState.STOPPED.value
    return CloudState.NOT_DEPLOYED.value


def is_legal_transition(target: DeploymentTarget, current: str, new: str) -> bool:
    """Check whether ``current -> new`` is an edge of the target's machine."""
    try:
        if target == DeploymentTarget.LOCAL:
            return LocalState(new) in LOCAL_TRANSITIONS[LocalState(current)]
        return CloudState(new) in CLOUD_TRANSITIONS[CloudState(current)]
    except ValueError:
        return False


def is_idle(target: DeploymentTarget, state: str) -> bool:
    """Return True when a target accepts a fresh ``start``."""
    return state in IDLE_STATES[target]


class DeploymentStatus(BaseModel):
    """Current status record of one deployment target.

    Attributes:
        target: Which lifecycle this record describes
        state: Current state value (LocalState or CloudState)
        active_process_id: Supervisor id of the live process, if any
        selected_service: Service subset passed to the spawned process
        environment: Target environment of a cloud deployment
        deployment_id: Identifier of the current cloud attempt
        started_at: Start of the current or most recent attempt
        ended_at: End of the most recent attempt
        result_metadata: Outcome data, populated only on success
        revision: Monotonic counter bumped on every committed transition
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: DeploymentTarget
    state: str
    active_process_id: str | None = None
    selected_service: str = "all"
    environment: str | None = None
    deployment_id: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    result_metadata: dict[str, Any] = Field(default_factory=dict)
    revision: int = 0


class DatabaseStatus(str, Enum):
    """Reachability of the application database."""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    ERROR = "error"


class ApiStatus(str, Enum):
    """Aggregate health of the deployed API as seen by the validator."""

    UNKNOWN = "unknown"
    TESTING = "testing"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class DatabaseHealth(BaseModel):
    """Last database reachability check."""

    model_config = ConfigDict(frozen=True)

    status: DatabaseStatus = DatabaseStatus.UNKNOWN
    last_check: datetime | None = None
    error: str | None = None


class ApiHealth(BaseModel):
    """Last endpoint validation outcome."""

    model_config = ConfigDict(frozen=True)

    status: ApiStatus = ApiStatus.UNKNOWN
    base_url: str | None = None
    endpoints: list[EndpointTest] = Field(default_factory=list)
    passed: int = 0
    total: int = 0
    last_test: datetime | None = None


class HealthSnapshot(BaseModel):
    """Shared health view: database reachability and endpoint health."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseHealth = Field(default_factory=DatabaseHealth)
    api: ApiHealth = Field(default_factory=ApiHealth)


class StatusSnapshot(BaseModel):
    """Full-state snapshot broadcast to observers."""

    model_config = ConfigDict(frozen=True)

    local: DeploymentStatus
    cloud: DeploymentStatus
    database: DatabaseHealth
    api: ApiHealth


class CommandResult(BaseModel):
    """Outcome of an accepted control command."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    target: DeploymentTarget
    state: str
    process_id: str | None = None
    port: int | None = None
    deployment_id: str | None = None
