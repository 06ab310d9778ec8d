"""Pydantic models for the orchestrator configuration file."""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deckwatch.config.defaults import (
    DEFAULT_CLOUD,
    DEFAULT_DATABASE_PORT,
    DEFAULT_DATABASE_TIMEOUT,
    DEFAULT_GRACE_PERIOD,
    DEFAULT_LOCAL,
    DEFAULT_LOG_CAPACITY,
    DEFAULT_PREFLIGHT_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_PROBES,
    DEFAULT_REPLAY_TAIL,
    DEFAULT_SERVER,
)
from deckwatch.models.endpoint import EndpointProbe


def _require_argv(v: list[str]) -> list[str]:
    if not v or not all(isinstance(part, str) and part for part in v):
        raise ValueError("command must be a non-empty list of strings")
    return v


class ServerConfig(BaseModel):
    """Control server settings."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default=DEFAULT_SERVER["host"])
    port: int = Field(default=DEFAULT_SERVER["port"], ge=1, le=65535)
    cors_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SERVER["cors_origins"])
    )
    observer_queue_size: int = Field(
        default=DEFAULT_SERVER["observer_queue_size"],
        ge=1,
        description="Per-observer outbound queue bound; oldest events drop first",
    )


class LocalServiceConfig(BaseModel):
    """Local service launcher settings.

    Attributes:
        command: Launcher argv; service arguments are appended
        port: Fixed port the launcher binds
        startup_delay: Seconds a process must survive to count as running
        services: Service name to extra argv. Empty means any name is
            accepted and passed as ``--service=NAME``
    """

    model_config = ConfigDict(extra="forbid")

    command: list[str] = Field(default_factory=lambda: list(DEFAULT_LOCAL["command"]))
    port: int = Field(default=DEFAULT_LOCAL["port"], ge=1, le=65535)
    startup_delay: float = Field(default=DEFAULT_LOCAL["startup_delay"], ge=0)
    services: dict[str, list[str]] = Field(
        default_factory=lambda: {
            k: list(v) for k, v in DEFAULT_LOCAL["services"].items()
        }
    )

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: list[str]) -> list[str]:
        """Require a non-empty argv."""
        return _require_argv(v)

    def resolve_args(self, service: str) -> list[str] | None:
        """Return the launcher argv for a service, or None if unknown."""
        if self.services:
            extra = self.services.get(service)
            if extra is None:
                return None
            return [*self.command, *extra]
        if service == "all":
            return list(self.command)
        return [*self.command, f"--service={service}"]


class CloudToolConfig(BaseModel):
    """Infrastructure deployment tool settings."""

    model_config = ConfigDict(extra="forbid")

    command: list[str] = Field(default_factory=lambda: list(DEFAULT_CLOUD["command"]))
    default_environment: str = Field(default=DEFAULT_CLOUD["default_environment"])
    outputs_file: str | None = Field(
        default=DEFAULT_CLOUD["outputs_file"],
        description="Key-value artifact the tool writes, relative to working_dir",
    )
    url_output_key: str = Field(default=DEFAULT_CLOUD["url_output_key"])
    url_pattern: str = Field(
        default=DEFAULT_CLOUD["url_pattern"],
        description="Regex with one group, scanned over stdout as a fallback",
    )
    env_file: str | None = Field(default=DEFAULT_CLOUD["env_file"])
    auto_validate: bool = Field(default=DEFAULT_CLOUD["auto_validate"])
    validation_delay: float = Field(default=DEFAULT_CLOUD["validation_delay"], ge=0)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: list[str]) -> list[str]:
        """Require a non-empty argv."""
        return _require_argv(v)

    @field_validator("url_pattern")
    @classmethod
    def validate_url_pattern(cls, v: str) -> str:
        """Require a compilable regex with a capture group."""
        try:
            compiled = re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid url_pattern: {exc}") from exc
        if compiled.groups < 1:
            raise ValueError("url_pattern must contain one capture group")
        return v


class PreflightConfig(BaseModel):
    """External consistency check gating cloud deployments."""

    model_config = ConfigDict(extra="forbid")

    command: list[str] | None = Field(
        default=None, description="Checker argv; null disables the gate"
    )
    timeout: float = Field(default=DEFAULT_PREFLIGHT_TIMEOUT, gt=0)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: list[str] | None) -> list[str] | None:
        """Allow null, otherwise require a non-empty argv."""
        return None if v is None else _require_argv(v)


class DatabaseCheckConfig(BaseModel):
    """TCP reachability check for the application database."""

    model_config = ConfigDict(extra="forbid")

    host: str | None = Field(default=None, description="null disables the check")
    port: int = Field(default=DEFAULT_DATABASE_PORT, ge=1, le=65535)
    timeout: float = Field(default=DEFAULT_DATABASE_TIMEOUT, gt=0)


class ValidationConfig(BaseModel):
    """Endpoint validator settings."""

    model_config = ConfigDict(extra="forbid")

    default_base_url: str | None = Field(
        default=None, description="Used when no deployment address is known"
    )
    timeout: float = Field(default=DEFAULT_PROBE_TIMEOUT, gt=0)
    probes: list[EndpointProbe] = Field(
        default_factory=lambda: [EndpointProbe(**p) for p in DEFAULT_PROBES]
    )


class OrchestratorConfig(BaseModel):
    """Top-level deckwatch configuration."""

    model_config = ConfigDict(extra="forbid")

    working_dir: Path = Field(default=Path("."))
    grace_period: float = Field(default=DEFAULT_GRACE_PERIOD, gt=0)
    log_capacity: int = Field(default=DEFAULT_LOG_CAPACITY, ge=1)
    replay_tail: int = Field(default=DEFAULT_REPLAY_TAIL, ge=0)
    server: ServerConfig = Field(default_factory=ServerConfig)
    local: LocalServiceConfig = Field(default_factory=LocalServiceConfig)
    cloud: CloudToolConfig = Field(default_factory=CloudToolConfig)
    preflight: PreflightConfig = Field(default_factory=PreflightConfig)
    database: DatabaseCheckConfig = Field(default_factory=DatabaseCheckConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
