"""Record source contract and the registry of searchable record types."""

from collections.abc import Iterable, Iterator
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


@runtime_checkable
class RecordSource(Protocol):
    """A record type that opts into unified search.

    Implementations own their records; the search index only ever holds
    (origin_type, origin_id) references back to them.
    """

    origin_type: str

    def project(self, record: Any) -> Any:
        """Map a record to its searchable title and body.

        May return a Projection, a mapping with "title" and "body", or any
        object exposing those attributes.
        """
        ...

    def record_id(self, record: Any) -> str:
        """Identifier of the record within this type's namespace."""
        ...

    def get(self, origin_id: str) -> Any | None:
        """Current committed record, or None when it does not exist."""
        ...

    def iter_records(self) -> Iterable[Any]:
        """All live records of this type, for reconciliation."""
        ...


class UnknownRecordTypeError(KeyError):
    """Raised when no source is registered for an origin type."""

    def __init__(self, origin_type: str) -> None:
        super().__init__(origin_type)
        self.origin_type = origin_type

    def __str__(self) -> str:
        return f"No record source registered for type: {self.origin_type}"


class SourceRegistry:
    """Registry mapping origin type names to their record sources.

    New record types are added by registering a source; nothing else in the
    index or coordinator changes.
    """

    def __init__(self) -> None:
        self._sources: dict[str, RecordSource] = {}

    def register(self, source: RecordSource) -> None:
        """Register a record source under its origin type.

        Args:
            source: Source implementing the RecordSource protocol.

        Raises:
            TypeError: If source does not implement the protocol.
            ValueError: If the origin type is blank or already registered.
        """
        if not isinstance(source, RecordSource):
            raise TypeError(f"{type(source).__name__} is not a RecordSource")

        origin_type = source.origin_type
        if not origin_type or not origin_type.strip():
            raise ValueError("Record source origin_type must not be blank")
        if origin_type in self._sources:
            raise ValueError(f"Record type already registered: {origin_type}")

        self._sources[origin_type] = source
        logger.info("record_source_registered", origin_type=origin_type)

    def get(self, origin_type: str) -> RecordSource:
        """Look up the source for an origin type.

        Raises:
            UnknownRecordTypeError: If the type is not registered.
        """
        try:
            return self._sources[origin_type]
        except KeyError:
            raise UnknownRecordTypeError(origin_type) from None

    def __contains__(self, origin_type: object) -> bool:
        return origin_type in self._sources

    def __iter__(self) -> Iterator[RecordSource]:
        return iter(list(self._sources.values()))

    @property
    def origin_types(self) -> list[str]:
        """Registered origin type names, sorted."""
        return sorted(self._sources)
