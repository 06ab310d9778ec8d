"""Custom exception hierarchy for deckwatch orchestration.

Every error that can reach an operator carries a stable ``code`` so the HTTP
layer and the CLI can report it without leaking internal detail.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deckwatch.models.endpoint import EndpointTest


class DeckwatchError(Exception):
    """Base exception for all deckwatch errors.

    Attributes:
        code: Stable, machine-readable error code
        message: Human-readable error message
    """

    code = "InternalError"

    def __init__(self, message: str) -> None:
        """Initialize the error with a human-readable message.

        Args:
            message: Descriptive error message
        """
        self.message = message
        super().__init__(message)


class ConfigError(DeckwatchError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    code = "ConfigError"

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        super().__init__(message)

    def __str__(self) -> str:
        return f"Configuration error in '{self.field}': {self.message}"


class StateConflictError(DeckwatchError):
    """Raised when a command requests an illegal state transition.

    Attributes:
        target: Deployment target the command addressed
        reason: ``AlreadyRunning``, ``NotRunning`` or ``CommandInProgress``
        state: State observed when the command was rejected
    """

    code = "StateConflict"

    ALREADY_RUNNING = "AlreadyRunning"
    NOT_RUNNING = "NotRunning"
    COMMAND_IN_PROGRESS = "CommandInProgress"

    def __init__(self, target: str, reason: str, state: str, message: str) -> None:
        """Create a conflict error for a rejected command."""
        self.target = target
        self.reason = reason
        self.state = state
        super().__init__(message)


class InvalidRequestError(DeckwatchError):
    """Raised when a request parameter is outside its accepted values."""

    code = "InvalidRequest"


class UnknownServiceError(DeckwatchError):
    """Raised when a local start names a service the launcher does not know."""

    code = "UnknownService"

    def __init__(self, service: str, known: list[str]) -> None:
        """Create an error listing the services that are configured."""
        self.service = service
        self.known = known
        super().__init__(
            f"Unknown service: {service}. Known services: {', '.join(known)}"
        )


class ProcessSpawnError(DeckwatchError):
    """Raised when a subprocess could not be launched.

    Attributes:
        command: The argv that failed to launch
    """

    code = "ProcessSpawnFailure"

    def __init__(self, command: list[str], original_error: Exception) -> None:
        """Create a spawn error wrapping the OS-level failure."""
        self.command = command
        self.original_error = original_error
        super().__init__(f"Failed to launch '{' '.join(command)}': {original_error}")


class ProcessExitError(DeckwatchError):
    """Raised when a subprocess exits with a non-zero code.

    Attributes:
        command: The argv of the failed process
        exit_code: Process exit code (negative for signals)
        output: Combined captured output lines
    """

    code = "ProcessExitFailure"

    def __init__(
        self, command: list[str], exit_code: int | None, output: list[str]
    ) -> None:
        """Create an exit error with the captured output."""
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Command failed with code {exit_code}")


class PreflightFailedError(DeckwatchError):
    """Raised when the external consistency check does not pass."""

    code = "PreflightFailed"

    def __init__(self, exit_code: int | None, detail: str | None = None) -> None:
        """Create a preflight error for the given exit code."""
        self.exit_code = exit_code
        message = f"Preflight consistency check failed (exit code {exit_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class EndpointValidationError(DeckwatchError):
    """Raised when a validation batch contains failed probes.

    Informational only: deployment state is never changed because of it.
    """

    code = "EndpointValidationFailure"

    def __init__(self, failed: list[EndpointTest], total: int) -> None:
        """Create an error summarising the failed probes."""
        self.failed = failed
        self.total = total
        names = ", ".join(f"{t.method} {t.path}" for t in failed)
        super().__init__(f"{len(failed)}/{total} endpoint probes failed: {names}")


class ObserverDisconnected(DeckwatchError):
    """Internal signal that an event observer went away."""

    code = "ObserverDisconnected"

    def __init__(self, observer_id: str) -> None:
        """Create a disconnect signal for an observer."""
        self.observer_id = observer_id
        super().__init__(f"Observer {observer_id} disconnected")
