"""Event types for record lifecycle changes and sync observability."""
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Event types carried on the bus."""

    RECORD_CREATED = "record.created"
    RECORD_UPDATED = "record.updated"
    RECORD_DELETED = "record.deleted"
    SYNC_FAILED = "sync.failed"
    CONSISTENCY_VIOLATION = "consistency.violation"
    HEARTBEAT = "heartbeat"


Topic = Literal["records", "system"]


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class LifecycleEvent(BaseModel):
    """Lifecycle change of one record, dispatched after its commit.

    Created and updated events carry the committed record so a projection can
    be computed without reading it back; deleted events carry only the id.

    Attributes:
        id: Unique event identifier (UUID).
        type: Created, updated or deleted.
        timestamp: Event timestamp in UTC.
        topic: Always "records".
        origin_type: Registered record type name.
        origin_id: Record identifier within its type.
        record: Committed record instance, absent for deletions.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=_new_id, description="Unique event identifier (UUID)")
    type: EventType = Field(description="Event type")
    timestamp: datetime = Field(default_factory=_now, description="Event timestamp (UTC)")
    topic: Literal["records"] = "records"
    origin_type: str
    origin_id: str
    record: Any = Field(default=None, exclude=True)

    @property
    def origin_key(self) -> tuple[str, str]:
        """(origin_type, origin_id) pair for routing and locking."""
        return (self.origin_type, self.origin_id)

    @classmethod
    def created(cls, origin_type: str, origin_id: object, record: Any) -> "LifecycleEvent":
        """Build a creation event for a committed record."""
        return cls(
            type=EventType.RECORD_CREATED,
            origin_type=origin_type,
            origin_id=str(origin_id),
            record=record,
        )

    @classmethod
    def updated(cls, origin_type: str, origin_id: object, record: Any) -> "LifecycleEvent":
        """Build an update event for a committed record."""
        return cls(
            type=EventType.RECORD_UPDATED,
            origin_type=origin_type,
            origin_id=str(origin_id),
            record=record,
        )

    @classmethod
    def deleted(cls, origin_type: str, origin_id: object) -> "LifecycleEvent":
        """Build a deletion event; only the identifier survives a delete."""
        return cls(
            type=EventType.RECORD_DELETED,
            origin_type=origin_type,
            origin_id=str(origin_id),
        )


class SystemEvent(BaseModel):
    """Operational event for the observability stream.

    Attributes:
        id: Unique event identifier (UUID).
        type: Sync failure, consistency violation or heartbeat.
        timestamp: Event timestamp in UTC.
        topic: Always "system".
        detail: Structured context for the event.
    """

    id: str = Field(default_factory=_new_id, description="Unique event identifier (UUID)")
    type: EventType = Field(description="Event type")
    timestamp: datetime = Field(default_factory=_now, description="Event timestamp (UTC)")
    topic: Literal["system"] = "system"
    detail: dict[str, Any] = Field(default_factory=dict)


BusEvent = LifecycleEvent | SystemEvent
