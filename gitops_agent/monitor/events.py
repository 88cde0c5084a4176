"""Shared change-event queue between pollers and the control loop.

Every poller publishes into one queue, so the control loop waits on a
single source no matter how many repositories are watched. Each
repository may hold at most one unconsumed event: an event offered while
the previous one from the same repository is still queued is dropped.
The queue is FIFO across repositories, so no repository can starve
another.
"""

import asyncio
import logging

from .models import ChangeEvent

logger = logging.getLogger(__name__)


class ChangeEventQueue:
    """FIFO of change events with one pending slot per repository."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._pending: set[str] = set()
        self._dropped = 0

    def offer(self, event: ChangeEvent) -> bool:
        """Enqueue an event unless its repository already has one pending.

        Returns:
            True if the event was enqueued, False if it was dropped
        """
        if event.repository_name in self._pending:
            self._dropped += 1
            logger.warning(
                f"Event slot full for '{event.repository_name}', "
                f"dropping {event}"
            )
            return False

        self._pending.add(event.repository_name)
        self._queue.put_nowait(event)
        return True

    async def get(self) -> ChangeEvent:
        """Wait for the next event and release its repository's slot."""
        event = await self._queue.get()
        self._pending.discard(event.repository_name)
        return event

    def get_nowait(self) -> ChangeEvent:
        """Take the next event without waiting.

        Raises:
            asyncio.QueueEmpty: If no event is queued
        """
        event = self._queue.get_nowait()
        self._pending.discard(event.repository_name)
        return event

    def has_pending(self, repository_name: str) -> bool:
        """Whether a repository has an unconsumed event queued."""
        return repository_name in self._pending

    def qsize(self) -> int:
        """Number of queued events."""
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        """Number of events dropped because a slot was full."""
        return self._dropped
