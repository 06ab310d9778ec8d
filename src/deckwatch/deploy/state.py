"""In-memory deployment state store.

The store holds one committed DeploymentStatus per target plus the shared
health snapshot. Records are frozen and replaced wholesale, and every
mutation of a target happens while that target's lock is held, so two
commands for one target can never both act on the same pre-transition state.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from deckwatch.lib.errors import StateConflictError
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.deployment import (
    ApiHealth,
    DatabaseHealth,
    DeploymentStatus,
    DeploymentTarget,
    HealthSnapshot,
    StatusSnapshot,
    initial_state,
    is_legal_transition,
)

logger = get_logger(__name__)

StateListener = Callable[[StatusSnapshot], None]


class DeploymentStateStore:
    """Committed status records for every target, guarded per target.

    Attributes:
        listeners: Callables invoked synchronously with the new snapshot
            after every commit
    """

    def __init__(self) -> None:
        """Create a store with every target in its initial idle state."""
        self._records: dict[DeploymentTarget, DeploymentStatus] = {
            target: DeploymentStatus(target=target, state=initial_state(target))
            for target in DeploymentTarget
        }
        self._health = HealthSnapshot()
        self._locks: dict[DeploymentTarget, asyncio.Lock] = {
            target: asyncio.Lock() for target in DeploymentTarget
        }
        self.listeners: list[StateListener] = []

    def get(self, target: DeploymentTarget) -> DeploymentStatus:
        """Return the committed record of a target."""
        return self._records[target]

    @property
    def health(self) -> HealthSnapshot:
        """Return the committed health snapshot."""
        return self._health

    def snapshot(self) -> StatusSnapshot:
        """Return a consistent full-state snapshot."""
        return StatusSnapshot(
            local=self._records[DeploymentTarget.LOCAL],
            cloud=self._records[DeploymentTarget.CLOUD],
            database=self._health.database,
            api=self._health.api,
        )

    def is_busy(self, target: DeploymentTarget) -> bool:
        """True while a command or internal transition holds the target."""
        return self._locks[target].locked()

    @asynccontextmanager
    async def command(
        self, target: DeploymentTarget
    ) -> AsyncIterator[DeploymentStatus]:
        """Hold a target for an external command, rejecting if already held.

        Commands are never queued behind each other: a second command for
        the same target while the first is still resolving fails fast.

        Raises:
            StateConflictError: With reason ``CommandInProgress``
        """
        lock = self._locks[target]
        if lock.locked():
            current = self._records[target]
            raise StateConflictError(
                target=target.value,
                reason=StateConflictError.COMMAND_IN_PROGRESS,
                state=current.state,
                message=(
                    f"A {target.value} command is already in progress "
                    f"(state: {current.state})"
                ),
            )
        async with lock:
            yield self._records[target]

    @asynccontextmanager
    async def lock(self, target: DeploymentTarget) -> AsyncIterator[DeploymentStatus]:
        """Hold a target for an internal transition, waiting for any command."""
        async with self._locks[target]:
            yield self._records[target]

    def commit(self, target: DeploymentTarget, **changes: Any) -> DeploymentStatus:
        """Replace a target's record, validating any state change.

        Must be called with the target's lock held.

        Raises:
            RuntimeError: If the target's lock is not held
            StateConflictError: If the requested state change is not a legal edge
        """
        if not self._locks[target].locked():
            raise RuntimeError(f"commit for '{target.value}' without holding its lock")

        current = self._records[target]
        new_state = changes.get("state")
        if new_state is not None:
            new_state = getattr(new_state, "value", new_state)
            changes["state"] = new_state
            if new_state != current.state and not is_legal_transition(
                target, current.state, new_state
            ):
                raise StateConflictError(
                    target=target.value,
                    reason="IllegalTransition",
                    state=current.state,
                    message=(
                        f"Illegal {target.value} transition: "
                        f"{current.state} -> {new_state}"
                    ),
                )

        changes["revision"] = current.revision + 1
        updated = current.model_copy(update=changes)
        self._records[target] = updated
        if new_state is not None and new_state != current.state:
            logger.debug(f"{target.value}: {current.state} -> {new_state}")
        self._notify()
        return updated

    def update_database(self, database: DatabaseHealth) -> None:
        """Replace the database health record."""
        self._health = self._health.model_copy(update={"database": database})
        self._notify()

    def update_api(self, api: ApiHealth) -> None:
        """Replace the API health record."""
        self._health = self._health.model_copy(update={"api": api})
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self.listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State listener failed")
