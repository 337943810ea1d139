"""
Bridge from background task workers to the UI message loop.

Workers publish ProgressEvents from any thread. The UI loop issues
watch_next() effects; each one waits a bounded time for the next event and
turns it into a single message, so the loop never blocks and never spins.
"""

from __future__ import annotations

import logging
import queue

from gearbox.messages import Effect, NoUpdate, TaskUpdated
from gearbox.providers import ProgressEvent

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 0.1
DEFAULT_CAPACITY = 100


class UpdateBridge:
    """Thread-safe event channel with timeout-bounded polling."""

    def __init__(
        self,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if poll_timeout <= 0:
            raise ValueError("poll_timeout must be positive")
        self._poll_timeout = poll_timeout
        # maxsize=0 means unbounded
        self._events: queue.Queue[ProgressEvent] = queue.Queue(maxsize=max(0, capacity))
        self._dropped = 0

    @property
    def poll_timeout(self) -> float:
        return self._poll_timeout

    @property
    def dropped(self) -> int:
        """Number of events discarded because the channel was full."""
        return self._dropped

    def pending(self) -> int:
        return self._events.qsize()

    def publish(self, event: ProgressEvent) -> bool:
        """Enqueue an event without blocking. Returns False if it was dropped."""
        try:
            self._events.put_nowait(event)
        except queue.Full:
            self._dropped += 1
            logger.warning(
                "Update channel full, dropping update task=%s stage=%s",
                event.task_id,
                event.stage,
            )
            return False
        return True

    def poll(self, timeout: float | None = None) -> TaskUpdated | NoUpdate:
        """Wait at most `timeout` seconds for the next event."""
        wait = self._poll_timeout if timeout is None else max(0.0, timeout)
        try:
            event = self._events.get(timeout=wait) if wait > 0 else self._events.get_nowait()
        except queue.Empty:
            return NoUpdate()
        return TaskUpdated(event)

    def watch_next(self) -> Effect:
        """Return an effect that yields the next message (or NoUpdate)."""
        return self.poll

    def drain(self) -> list[ProgressEvent]:
        """Remove and return every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events
