"""Event bus subscriber feeding record lifecycle events to the coordinator."""

import asyncio

import structlog

from unisearch.events.bus import EventBus
from unisearch.events.types import LifecycleEvent
from unisearch.search.coordinator import SyncCoordinator

logger = structlog.get_logger()


async def run_sync_subscriber(
    event_bus: EventBus,
    coordinator: SyncCoordinator,
    ready: asyncio.Event | None = None,
) -> None:
    """Subscribe to record events and hand them to the sync coordinator.

    Runs as a long-lived asyncio task. The subscription is lossless so a
    burst of writes can never drop a lifecycle event before it is queued.

    Args:
        event_bus: Application event bus instance.
        coordinator: Running coordinator that applies the events.
        ready: Set once the subscription is active.
    """
    subscriber_id, events = await event_bus.subscribe(topic="records", lossless=True)
    logger.info("search_subscriber_started", subscriber_id=subscriber_id)
    if ready is not None:
        ready.set()

    try:
        async for event in events:
            if not isinstance(event, LifecycleEvent):
                continue
            try:
                await coordinator.submit(event)
            except RuntimeError as e:
                logger.error(
                    "search_subscriber_submit_failed",
                    origin_type=event.origin_type,
                    origin_id=event.origin_id,
                    event_type=event.type.value,
                    error=str(e),
                )
    except asyncio.CancelledError:
        logger.info("search_subscriber_stopped", subscriber_id=subscriber_id)
        raise
