"""Pydantic schemas for index entries, search responses and sync reports."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

OriginKey = tuple[str, str]


class Projection(BaseModel):
    """Canonical searchable view of a record.

    Attributes:
        title: Short searchable text.
        body: Long searchable text.
    """

    model_config = ConfigDict(frozen=True)

    title: StrictStr
    body: StrictStr

    @field_validator("title", "body")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Drop surrounding whitespace so equal text compares equal."""
        return v.strip()


class IndexEntry(BaseModel):
    """Denormalized search index row for one origin record.

    Attributes:
        id: Store-assigned identifier.
        title: Indexed title text.
        body: Indexed body text.
        origin_type: Record type that produced this entry.
        origin_id: Record identifier within its type.
        updated_at: Last time the projection changed (UTC).
    """

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    body: str
    origin_type: str
    origin_id: str
    updated_at: datetime

    @property
    def origin_key(self) -> OriginKey:
        """(origin_type, origin_id) pair identifying the origin record."""
        return (self.origin_type, self.origin_id)

    def projection(self) -> Projection:
        """Projection currently stored in this entry."""
        return Projection(title=self.title, body=self.body)


class SearchResult(BaseModel):
    """Individual search hit with the reference back to its origin.

    The origin record is not resolved here; callers look it up by
    (origin_type, origin_id) and must tolerate it being gone.

    Attributes:
        entry_id: Index entry identifier.
        title: Entry title.
        body: Entry body.
        origin_type: Record type that produced the entry.
        origin_id: Record identifier within its type.
        updated_at: Last projection change (UTC).
    """

    entry_id: int
    title: str
    body: str
    origin_type: str
    origin_id: str
    updated_at: datetime

    @classmethod
    def from_entry(cls, entry: IndexEntry) -> "SearchResult":
        """Build a result from a stored entry."""
        return cls(
            entry_id=entry.id,
            title=entry.title,
            body=entry.body,
            origin_type=entry.origin_type,
            origin_id=entry.origin_id,
            updated_at=entry.updated_at,
        )


class SearchResponse(BaseModel):
    """Paginated search response envelope.

    Attributes:
        query: The original search query string.
        results: Matches, most recently updated first.
        total: Total number of matching entries.
        limit: Maximum results per page.
        offset: Number of results skipped.
    """

    query: str
    results: list[SearchResult]
    total: int
    limit: int
    offset: int


class ReconcileReport(BaseModel):
    """Outcome of one reconciliation sweep.

    Attributes:
        repaired: Entries created or refreshed for live records.
        orphans_removed: Entries removed because their record is gone.
        duplicates_collapsed: Surplus entries removed for a shared origin key.
        failed: Keys that could not be repaired in this sweep.
    """

    repaired: int = 0
    orphans_removed: int = 0
    duplicates_collapsed: int = 0
    failed: int = 0


class FlaggedKey(BaseModel):
    """Origin key that synchronization gave up on."""

    origin_type: str
    origin_id: str
    reason: str


class SyncStatus(BaseModel):
    """Counters and pending work of the synchronization coordinator.

    Attributes:
        running: Whether shard workers are active.
        applied: Events applied successfully.
        retried: Retry attempts made after storage failures.
        failed: Events that exhausted their attempts or were invalid.
        pending: Events queued but not yet applied.
        flagged: Keys awaiting reconciliation.
    """

    running: bool
    applied: int
    retried: int
    failed: int
    pending: int
    flagged: list[FlaggedKey] = Field(default_factory=list)
