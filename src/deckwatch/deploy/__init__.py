"""deckwatch deployment engine.

This package provides process supervision, the per-target state machine,
log buffering, event fan-out and endpoint validation.
"""

from deckwatch.deploy.broadcast import BroadcastChannel, Observer
from deckwatch.deploy.log_buffer import LogRingBuffer
from deckwatch.deploy.machine import DeploymentStateMachine
from deckwatch.deploy.state import DeploymentStateStore
from deckwatch.deploy.supervisor import ProcessHandle, ProcessSupervisor
from deckwatch.deploy.validator import EndpointValidator

__all__ = [
    "BroadcastChannel",
    "DeploymentStateMachine",
    "DeploymentStateStore",
    "EndpointValidator",
    "LogRingBuffer",
    "Observer",
    "ProcessHandle",
    "ProcessSupervisor",
]
