"""SSE broadcast hub streaming operational events to clients."""

import asyncio
import contextlib
from collections.abc import AsyncIterator

import structlog
from sse_starlette import ServerSentEvent

from unisearch.events.bus import EventBus
from unisearch.events.types import BusEvent, EventType, SystemEvent

logger = structlog.get_logger()


def concerns(event: BusEvent, origin_type: str | None) -> bool:
    """Whether an event is about records of origin_type (None matches all)."""
    if origin_type is None:
        return True
    if isinstance(event, SystemEvent):
        return event.detail.get("origin_type") == origin_type
    return event.origin_type == origin_type


class BroadcastHub:
    """SSE broadcast hub for the observability channel.

    Relays bus events (sync failures, consistency violations and, when
    requested, record lifecycle events) to SSE clients with periodic
    heartbeats.

    Attributes:
        heartbeat_interval: Seconds between heartbeat events.
    """

    def __init__(
        self,
        event_bus: EventBus,
        heartbeat_interval: float = 15.0,
    ) -> None:
        """Initialize broadcast hub.

        Args:
            event_bus: Event bus for pub/sub.
            heartbeat_interval: Seconds between heartbeats.
        """
        self._bus = event_bus
        self._heartbeat_interval = heartbeat_interval
        self._active_connections = 0
        self._lock = asyncio.Lock()

    @property
    def active_connections(self) -> int:
        """Number of active SSE connections."""
        return self._active_connections

    async def report(self, event_type: EventType, **detail: object) -> None:
        """Publish an operational event on the system topic.

        Args:
            event_type: SYNC_FAILED or CONSISTENCY_VIOLATION.
            **detail: Structured context forwarded to subscribers.
        """
        event = SystemEvent(type=event_type, detail=detail)
        delivered = await self._bus.publish(event)
        logger.debug(
            "system_event_published",
            event_type=event_type.value,
            delivered_to=delivered,
        )

    async def create_sse_generator(
        self,
        topic: str = "system",
        origin_type: str | None = None,
    ) -> AsyncIterator[ServerSentEvent]:
        """Create SSE event generator for a client connection.

        Args:
            topic: Topic filter for events.
            origin_type: Only relay events about this record type.

        Yields:
            Server-sent events for the client.
        """
        subscriber_id, event_iter = await self._bus.subscribe(topic)

        async with self._lock:
            self._active_connections += 1

        logger.info(
            "sse_client_connected",
            subscriber_id=subscriber_id,
            topic=topic,
            origin_type=origin_type,
            active_connections=self._active_connections,
        )

        queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=10)

        async def pump_events() -> None:
            async for event in event_iter:
                if concerns(event, origin_type):
                    await queue.put(event)

        pump_task = asyncio.create_task(pump_events())

        try:
            while True:
                try:
                    event: BusEvent = await asyncio.wait_for(
                        queue.get(),
                        timeout=self._heartbeat_interval,
                    )
                except TimeoutError:
                    event = SystemEvent(type=EventType.HEARTBEAT)
                yield ServerSentEvent(
                    event=event.type.value,
                    data=event.model_dump_json(),
                )
        finally:
            pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump_task

            async with self._lock:
                self._active_connections -= 1

            logger.info(
                "sse_client_disconnected",
                subscriber_id=subscriber_id,
                active_connections=self._active_connections,
            )

    async def shutdown(self) -> None:
        """Log hub shutdown with connection and drop counters."""
        logger.info(
            "broadcast_hub_shutdown",
            active_connections=self._active_connections,
            dropped_events=self._bus.dropped_events,
        )
