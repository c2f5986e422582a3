"""In-memory record repositories that dispatch lifecycle events after commit."""

import itertools
import threading
from collections.abc import Callable
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from unisearch.events.bus import EventBus
from unisearch.events.types import LifecycleEvent

logger = structlog.get_logger()

R = TypeVar("R", bound=BaseModel)


class RecordNotFoundError(LookupError):
    """Raised when a record id does not exist in its repository."""

    def __init__(self, origin_type: str, record_id: object) -> None:
        super().__init__(f"{origin_type} not found: {record_id}")
        self.origin_type = origin_type
        self.record_id = record_id


class DuplicateRecordError(ValueError):
    """Raised when creating a record whose id is already taken."""

    def __init__(self, origin_type: str, record_id: object) -> None:
        super().__init__(f"{origin_type} already exists: {record_id}")
        self.origin_type = origin_type
        self.record_id = record_id


class InMemoryRecordRepository(Generic[R]):
    """Record storage for one record type, searchable through the index.

    Stands in for a record type's own persistence engine. Every mutation is
    committed first and only then announced on the event bus, so index
    synchronization can neither slow down nor fail the write itself.

    Implements the RecordSource protocol.

    Attributes:
        origin_type: Type name used in index entries and events.
    """

    def __init__(
        self,
        origin_type: str,
        model: type[R],
        projector: Callable[[R], Any],
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize repository.

        Args:
            origin_type: Type name used in index entries and events.
            model: Pydantic model for records of this type (must have an int id).
            projector: Maps a record to its searchable title and body.
            event_bus: Bus receiving lifecycle events, or None to stay silent.
        """
        self.origin_type = origin_type
        self._model = model
        self._projector = projector
        self._bus = event_bus
        self._records: dict[int, R] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # RecordSource protocol

    def project(self, record: R) -> Any:
        return self._projector(record)

    def record_id(self, record: R) -> str:
        return str(record.id)  # type: ignore[attr-defined]

    def get(self, origin_id: str | int) -> R | None:
        try:
            key = int(origin_id)
        except (TypeError, ValueError):
            return None
        with self._lock:
            return self._records.get(key)

    def iter_records(self) -> list[R]:
        with self._lock:
            return list(self._records.values())

    # Record operations

    async def create(self, fields: dict[str, Any]) -> R:
        """Create and commit a record, then dispatch a created event.

        Args:
            fields: Record fields; "id" is assigned when omitted.

        Returns:
            The committed record.

        Raises:
            DuplicateRecordError: If the given id is already taken.
            pydantic.ValidationError: If the fields do not fit the model.
        """
        with self._lock:
            record_id = fields.get("id")
            if record_id is None:
                record_id = next(self._ids)
                while record_id in self._records:
                    record_id = next(self._ids)
            record = self._model.model_validate({**fields, "id": record_id})
            key = record.id  # type: ignore[attr-defined]
            if key in self._records:
                raise DuplicateRecordError(self.origin_type, key)
            self._records[key] = record

        logger.info("record_created", origin_type=self.origin_type, record_id=key)
        await self._dispatch(LifecycleEvent.created(self.origin_type, key, record))
        return record

    async def update(self, record_id: int, changes: dict[str, Any]) -> R:
        """Apply changes to a record, commit, then dispatch an updated event.

        Raises:
            RecordNotFoundError: If the record does not exist.
            pydantic.ValidationError: If the result does not fit the model.
        """
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise RecordNotFoundError(self.origin_type, record_id)
            merged = {**current.model_dump(), **changes, "id": record_id}
            record = self._model.model_validate(merged)
            self._records[record_id] = record

        logger.info("record_updated", origin_type=self.origin_type, record_id=record_id)
        await self._dispatch(LifecycleEvent.updated(self.origin_type, record_id, record))
        return record

    async def delete(self, record_id: int) -> bool:
        """Delete a record, commit, then dispatch a deleted event.

        Returns:
            True if a record was deleted, False if it did not exist.
        """
        with self._lock:
            removed = self._records.pop(record_id, None)

        if removed is None:
            return False

        logger.info("record_deleted", origin_type=self.origin_type, record_id=record_id)
        await self._dispatch(LifecycleEvent.deleted(self.origin_type, record_id))
        return True

    def purge(self, record_id: int) -> bool:
        """Remove a record without announcing it.

        Models out-of-band deletions (bulk cleanup, restores) that only a
        reconciliation sweep will notice.
        """
        with self._lock:
            return self._records.pop(record_id, None) is not None

    async def _dispatch(self, event: LifecycleEvent) -> None:
        """Publish a lifecycle event; failures are logged, never raised."""
        if self._bus is None:
            return
        try:
            await self._bus.publish(event)
        except Exception as e:
            logger.error(
                "record_event_dispatch_failed",
                origin_type=event.origin_type,
                origin_id=event.origin_id,
                event_type=event.type.value,
                error=str(e),
            )

