"""Event channel for record lifecycle changes and sync observability."""
from unisearch.events.bus import EventBus
from unisearch.events.hub import BroadcastHub
from unisearch.events.types import BusEvent, EventType, LifecycleEvent, SystemEvent

__all__ = [
    "BroadcastHub",
    "BusEvent",
    "EventBus",
    "EventType",
    "LifecycleEvent",
    "SystemEvent",
]
