"""In-process fan-out of UI notifications.

Hey future me - EventBroadcaster is the INotificationSink the app actually runs with. Every
SSE connection subscribes and gets its own bounded queue. A slow or stuck browser tab can't
make the core wait: when its queue is full, the event is dropped FOR THAT SUBSCRIBER only.

emit() must be called on the event loop thread (the watcher hops over via
call_soon_threadsafe before emitting).
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from soundvault.domain.ports.notification import INotificationSink, NotificationEvent

logger = logging.getLogger(__name__)


class EventBroadcaster(INotificationSink):
    """Fans events out to subscriber queues."""

    def __init__(self, max_queue_size: int = 100) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue[NotificationEvent]] = set()
        self._dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: NotificationEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self._dropped += 1
                logger.debug(f"Dropped {event.name} event for a slow subscriber")

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[NotificationEvent]]:
        """Register a subscriber queue for the duration of the context."""
        queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    def get_stats(self) -> dict[str, int]:
        return {"subscribers": len(self._subscribers), "dropped": self._dropped}
