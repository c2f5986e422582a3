"""In-memory event bus with topic-based pub/sub."""
import asyncio
import uuid
from collections.abc import AsyncIterator

import structlog

from unisearch.events.types import BusEvent

logger = structlog.get_logger()

TOPICS: tuple[str, ...] = ("records", "system", "*")


class EventBus:
    """Async event bus with topic-based fan-out and backpressure.

    Lossy subscribers (SSE clients) use a drop-oldest strategy when their
    queue overflows. Lossless subscribers (index synchronization) get an
    unbounded queue, so publishing never drops a lifecycle event for them.

    Attributes:
        queue_size: Maximum size of each lossy subscriber queue.
        max_subscribers: Maximum number of concurrent subscribers.
    """

    def __init__(
        self,
        queue_size: int = 100,
        max_subscribers: int = 100,
    ) -> None:
        """Initialize event bus.

        Args:
            queue_size: Maximum items per lossy subscriber queue.
            max_subscribers: Maximum concurrent subscribers allowed.
        """
        self._subscribers: dict[str, dict[str, asyncio.Queue[BusEvent]]] = {
            topic: {} for topic in TOPICS
        }
        self._queue_size = queue_size
        self._max_subscribers = max_subscribers
        self._dropped_count = 0
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        """Total number of active subscribers across all topics."""
        return sum(len(subs) for subs in self._subscribers.values())

    @property
    def dropped_events(self) -> int:
        """Total number of events dropped due to queue overflow."""
        return self._dropped_count

    async def publish(self, event: BusEvent) -> int:
        """Publish event to all subscribers of the topic and wildcard.

        Args:
            event: Lifecycle or system event to publish.

        Returns:
            Number of subscribers that received the event.
        """
        delivered = 0

        for topic in (event.topic, "*"):
            subscribers = self._subscribers.get(topic, {})
            for queue in list(subscribers.values()):
                try:
                    queue.put_nowait(event)
                    delivered += 1
                except asyncio.QueueFull:
                    try:
                        queue.get_nowait()
                        queue.put_nowait(event)
                        delivered += 1
                        self._dropped_count += 1
                    except asyncio.QueueEmpty:
                        pass

        return delivered

    async def subscribe(
        self,
        topic: str = "*",
        lossless: bool = False,
    ) -> tuple[str, AsyncIterator[BusEvent]]:
        """Subscribe to events on a topic.

        Args:
            topic: Topic to subscribe to. Use "*" for all events.
            lossless: Use an unbounded queue so no event is ever dropped.

        Returns:
            Tuple of (subscriber_id, event_iterator).

        Raises:
            ValueError: If maximum subscribers reached.
        """
        async with self._lock:
            if self.subscriber_count >= self._max_subscribers:
                raise ValueError("Maximum subscribers reached")

            subscriber_id = str(uuid.uuid4())
            queue: asyncio.Queue[BusEvent] = asyncio.Queue(
                maxsize=0 if lossless else self._queue_size,
            )

            if topic not in self._subscribers:
                topic = "*"

            self._subscribers[topic][subscriber_id] = queue

        async def event_iterator() -> AsyncIterator[BusEvent]:
            try:
                while True:
                    event = await queue.get()
                    yield event
            finally:
                await self.unsubscribe(topic, subscriber_id)

        return subscriber_id, event_iterator()

    async def unsubscribe(self, topic: str, subscriber_id: str) -> None:
        """Remove a subscriber from the bus.

        Args:
            topic: Topic the subscriber was subscribed to.
            subscriber_id: ID of the subscriber to remove.
        """
        async with self._lock:
            if topic in self._subscribers:
                self._subscribers[topic].pop(subscriber_id, None)
                logger.debug(
                    "subscriber_removed",
                    subscriber_id=subscriber_id,
                    topic=topic,
                )
