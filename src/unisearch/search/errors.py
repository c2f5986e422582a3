"""Error taxonomy for the search index and its synchronization."""


class SearchIndexError(Exception):
    """Base class for search index failures."""


class ValidationError(SearchIndexError):
    """Raised when a record's projection is absent or malformed.

    Nothing is written to the index when this is raised.
    """

    def __init__(
        self,
        message: str,
        origin_type: str | None = None,
        origin_id: str | None = None,
        errors: list[dict[str, object]] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error description.
            origin_type: Record type whose projection failed, if known.
            origin_id: Record identifier whose projection failed, if known.
            errors: Field-level details from pydantic, if any.
        """
        super().__init__(message)
        self.origin_type = origin_type
        self.origin_id = origin_id
        self.errors = errors or []


class NotFoundError(SearchIndexError):
    """Raised when an index entry id does not exist."""

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Index entry not found: {entry_id}")
        self.entry_id = entry_id


class StorageError(SearchIndexError):
    """Raised when the index store cannot complete an operation.

    Transient by nature (locked database, I/O failure, lock timeout); the
    synchronization coordinator retries it.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        """Initialize storage error.

        Args:
            message: Error description.
            operation: Store operation that failed (e.g. "upsert").
        """
        super().__init__(message)
        self.operation = operation


class ConsistencyViolation(SearchIndexError):
    """A broken uniqueness or liveness invariant found in the index.

    Reconciliation builds these as reports rather than raising them; each is
    logged and published before the repair is attempted.

    Attributes:
        kind: "duplicate", "orphan", "unknown_type", "missing" or "stale".
        origin_type: Record type of the affected key.
        origin_id: Record identifier of the affected key.
        entry_ids: Index entry ids involved, when known.
    """

    def __init__(
        self,
        kind: str,
        origin_type: str,
        origin_id: str,
        entry_ids: list[int] | None = None,
    ) -> None:
        super().__init__(f"{kind} index entry for {origin_type}:{origin_id}")
        self.kind = kind
        self.origin_type = origin_type
        self.origin_id = origin_id
        self.entry_ids = entry_ids or []

    def as_dict(self) -> dict[str, object]:
        """Serialize for logs and system events."""
        return {
            "kind": self.kind,
            "origin_type": self.origin_type,
            "origin_id": self.origin_id,
            "entry_ids": self.entry_ids,
        }
