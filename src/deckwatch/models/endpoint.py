"""Models for endpoint probes and validation results."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EndpointProbe(BaseModel):
    """Declared probe: a route and the status codes that count as a pass.

    Several probes expect an authentication rejection (400/401): the route
    exists and is enforcing access control.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    method: str = Field(default="GET", description="HTTP method")
    path: str = Field(..., description="Route relative to the base address")
    expect_status: list[int] = Field(
        default_factory=lambda: [200], description="Acceptable status codes"
    )
    description: str = Field(default="", description="Human-readable label")

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        """Upper-case the HTTP method."""
        return v.upper()

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Require paths to be absolute so they join cleanly."""
        if not v.startswith("/"):
            raise ValueError(f"Probe path must start with '/': {v}")
        return v

    @field_validator("expect_status")
    @classmethod
    def validate_expect_status(cls, v: list[int]) -> list[int]:
        """Require at least one acceptable status code."""
        if not v:
            raise ValueError("expect_status must list at least one status code")
        return v


class EndpointTest(BaseModel):
    """Result of a single probe.

    Attributes:
        method: HTTP method used
        path: Probed route
        description: Probe label
        expect_status: Acceptable status codes
        status_code: Observed status, None when the request never completed
        latency_ms: Observed latency in milliseconds
        success: Whether the observed status is in expect_status
        error: Request-level error text, if any
    """

    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    description: str = ""
    expect_status: list[int]
    status_code: int | None = None
    latency_ms: float = 0.0
    success: bool
    error: str | None = None


class ValidationReport(BaseModel):
    """Ordered batch of probe results with a summary."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    results: list[EndpointTest]
    passed: int
    total: int
    started_at: datetime
    finished_at: datetime
    deployment_id: str | None = None
    stale: bool = False

    @property
    def healthy(self) -> bool:
        """True only if every probe passed."""
        return self.passed == self.total

    @property
    def failed(self) -> list[EndpointTest]:
        """Probes that did not pass."""
        return [r for r in self.results if not r.success]

    def raise_for_health(self) -> None:
        """Raise EndpointValidationError if any probe failed."""
        from deckwatch.lib.errors import EndpointValidationError

        if not self.healthy:
            raise EndpointValidationError(self.failed, self.total)
