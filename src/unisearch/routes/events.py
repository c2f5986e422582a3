"""Observability stream of sync failures and consistency violations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from fastapi import APIRouter, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse

if TYPE_CHECKING:
    from unisearch.events.hub import BroadcastHub
    from unisearch.records.registry import SourceRegistry

router = APIRouter(prefix="/events", tags=["events"])

StreamTopic = Literal["records", "system", "*"]

NO_BUFFERING = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/stream")
async def event_stream(
    request: Request,
    topic: StreamTopic = Query(
        default="system",
        description="records, system, or * for both",
    ),
    origin_type: str | None = Query(
        default=None,
        alias="type",
        description="Only relay events about this record type",
    ),
) -> EventSourceResponse:
    """Stream index synchronization events as Server-Sent Events.

    The default "system" topic carries sync.failed and
    consistency.violation; "records" relays lifecycle events as they are
    indexed. Heartbeats are sent whatever the filter.

    Raises:
        HTTPException: 404 if type names no registered record source.
    """
    registry: SourceRegistry = request.app.state.registry
    if origin_type is not None and origin_type not in registry:
        raise HTTPException(
            status_code=404, detail=f"Unknown record type: {origin_type}"
        )

    hub: BroadcastHub = request.app.state.broadcast_hub
    return EventSourceResponse(
        hub.create_sse_generator(topic, origin_type=origin_type),
        headers=NO_BUFFERING,
    )
