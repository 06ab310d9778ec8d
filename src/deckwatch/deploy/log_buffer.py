"""Bounded per-channel log storage."""

from __future__ import annotations

import heapq
from collections import deque

from deckwatch.config.defaults import DEFAULT_LOG_CAPACITY
from deckwatch.models.deployment import DeploymentTarget
from deckwatch.models.log_entry import LogEntry


class LogRingBuffer:
    """Per-channel FIFO of log entries with a fixed capacity.

    Appending past capacity evicts the oldest entry of that channel only.
    Entries are immutable, so callers may keep the references they get back.
    """

    def __init__(self, capacity: int = DEFAULT_LOG_CAPACITY) -> None:
        """Create an empty buffer.

        Args:
            capacity: Maximum number of entries retained per channel
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._channels: dict[DeploymentTarget, deque[LogEntry]] = {
            target: deque(maxlen=capacity) for target in DeploymentTarget
        }

    def append(self, channel: DeploymentTarget, entry: LogEntry) -> LogEntry:
        """Append an entry to a channel, evicting the oldest on overflow."""
        if entry.channel != channel:
            raise ValueError(
                f"Entry for channel '{entry.channel.value}' "
                f"appended to '{channel.value}'"
            )
        self._channels[channel].append(entry)
        return entry

    def tail(self, channel: DeploymentTarget, n: int) -> list[LogEntry]:
        """Return the most recent ``n`` entries of a channel in insertion order."""
        if n <= 0:
            return []
        entries = self._channels[channel]
        if n >= len(entries):
            return list(entries)
        return list(entries)[-n:]

    def merged_tail(self, n: int) -> list[LogEntry]:
        """Return the most recent ``n`` entries across channels by timestamp."""
        if n <= 0:
            return []
        merged = list(
            heapq.merge(*self._channels.values(), key=lambda entry: entry.timestamp)
        )
        return merged[-n:]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._channels.values())

    def count(self, channel: DeploymentTarget) -> int:
        """Number of entries currently held for a channel."""
        return len(self._channels[channel])
