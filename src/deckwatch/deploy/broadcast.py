"""Fan-out of log and state events to connected observers.

Publication never suspends. Each observer owns a bounded outbound queue;
when it is full the oldest queued event is dropped, so a slow observer
loses history instead of stalling the publisher or its peers.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from typing import Any

from ulid import ULID

from deckwatch.config.defaults import DEFAULT_REPLAY_TAIL, DEFAULT_SERVER
from deckwatch.lib.errors import ObserverDisconnected
from deckwatch.lib.logging_config import get_logger
from deckwatch.models.deployment import DeploymentTarget, StatusSnapshot
from deckwatch.models.log_entry import LogEntry

logger = get_logger(__name__)

Event = dict[str, Any]
SnapshotProvider = Callable[[], StatusSnapshot]
TailProvider = Callable[[DeploymentTarget, int], list[LogEntry]]

EVENT_LOG = "log"
EVENT_STATE = "state"


def log_event(entry: LogEntry) -> Event:
    """Build the wire message for a log entry."""
    return {"type": EVENT_LOG, "data": entry.model_dump(mode="json")}


def state_event(snapshot: StatusSnapshot) -> Event:
    """Build the wire message for a full-state snapshot."""
    return {"type": EVENT_STATE, "data": snapshot.model_dump(mode="json")}


class Observer:
    """One connected consumer with a bounded, drop-oldest outbound queue.

    Attributes:
        id: Unique observer identifier
        dropped: Number of events evicted because the queue was full
    """

    def __init__(self, maxsize: int) -> None:
        """Create an observer whose queue holds at most ``maxsize`` events."""
        self.id = str(ULID())
        self.dropped = 0
        self._queue: deque[Event] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        """True once the observer has been disconnected."""
        return self._closed

    @property
    def pending(self) -> int:
        """Number of queued, undelivered events."""
        return len(self._queue)

    def push(self, event: Event) -> None:
        """Queue an event without blocking.

        Raises:
            ObserverDisconnected: If the observer is closed
        """
        if self._closed:
            raise ObserverDisconnected(self.id)
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
        self._queue.append(event)
        self._ready.set()

    async def get(self) -> Event:
        """Suspend until an event is available and return it.

        Raises:
            ObserverDisconnected: If the observer is closed with nothing queued
        """
        while not self._queue:
            if self._closed:
                raise ObserverDisconnected(self.id)
            self._ready.clear()
            await self._ready.wait()
        return self._queue.popleft()

    def close(self) -> None:
        """Mark the observer closed and wake any pending ``get``."""
        self._closed = True
        self._ready.set()

    def __aiter__(self) -> Observer:
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.get()
        except ObserverDisconnected:
            raise StopAsyncIteration from None


class BroadcastChannel:
    """Pub-sub hub delivering every event to every connected observer."""

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        tail_provider: TailProvider,
        queue_size: int = DEFAULT_SERVER["observer_queue_size"],
        replay_tail: int = DEFAULT_REPLAY_TAIL,
    ) -> None:
        """Initialize the channel.

        Args:
            snapshot_provider: Returns the current committed full state
            tail_provider: Returns the last ``n`` entries of a log channel
            queue_size: Per-observer queue bound
            replay_tail: Entries per log channel replayed on connect
        """
        self._snapshot_provider = snapshot_provider
        self._tail_provider = tail_provider
        self.queue_size = queue_size
        self.replay_tail = replay_tail
        self._observers: dict[str, Observer] = {}

    @property
    def observer_count(self) -> int:
        """Number of connected observers."""
        return len(self._observers)

    def connect(self) -> Observer:
        """Register a new observer, seeded with the current state and log tails.

        Seeding and registration happen without yielding to the event loop,
        so the observer neither misses nor duplicates any event.
        """
        observer = Observer(max(self.queue_size, self._replay_size()))
        observer.push(state_event(self._snapshot_provider()))
        for channel in DeploymentTarget:
            for entry in self._tail_provider(channel, self.replay_tail):
                observer.push(log_event(entry))
        self._observers[observer.id] = observer
        logger.info(f"Observer {observer.id} connected ({self.observer_count} total)")
        return observer

    def disconnect(self, observer: Observer) -> None:
        """Remove an observer from the fan-out set."""
        observer.close()
        if self._observers.pop(observer.id, None) is not None:
            logger.info(
                f"Observer {observer.id} disconnected ({self.observer_count} total)"
            )

    def publish(self, event: Event) -> int:
        """Deliver an event to every observer; returns how many accepted it."""
        delivered = 0
        for observer in list(self._observers.values()):
            try:
                observer.push(event)
            except ObserverDisconnected:
                self._observers.pop(observer.id, None)
                continue
            delivered += 1
        return delivered

    def publish_log(self, entry: LogEntry) -> int:
        """Publish a log entry."""
        return self.publish(log_event(entry))

    def publish_state(self, snapshot: StatusSnapshot) -> int:
        """Publish a full-state snapshot."""
        return self.publish(state_event(snapshot))

    def close_all(self) -> None:
        """Disconnect every observer."""
        for observer in list(self._observers.values()):
            self.disconnect(observer)

    def _replay_size(self) -> int:
        return 1 + self.replay_tail * len(DeploymentTarget)
