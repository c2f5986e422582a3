"""SQLite-backed index entry store with one entry per origin record."""

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from unisearch.search.errors import (
    ConsistencyViolation,
    NotFoundError,
    StorageError,
    ValidationError,
)
from unisearch.search.projection import coerce_projection
from unisearch.search.schemas import IndexEntry, OriginKey

logger = structlog.get_logger()

_COLUMNS = "id, title, body, origin_type, origin_id, updated_at"

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS index_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        body TEXT NOT NULL,
        origin_type TEXT NOT NULL,
        origin_id TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

# Created after duplicates from older databases have been collapsed
_CREATE_UNIQUE_ORIGIN = """
    CREATE UNIQUE INDEX IF NOT EXISTS ux_index_entries_origin
    ON index_entries (origin_type, origin_id)
"""

_CREATE_RECENCY = """
    CREATE INDEX IF NOT EXISTS ix_index_entries_recency
    ON index_entries (updated_at DESC, id DESC)
"""


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _format_ts(value: datetime) -> str:
    """Fixed-width UTC ISO format, so text order equals time order."""
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _row_to_entry(row: tuple[Any, ...]) -> IndexEntry:
    entry_id, title, body, origin_type, origin_id, updated_at = row
    return IndexEntry(
        id=entry_id,
        title=title,
        body=body,
        origin_type=origin_type,
        origin_id=origin_id,
        updated_at=datetime.fromisoformat(updated_at),
    )


def _origin_key(origin_type: str, origin_id: object) -> OriginKey:
    """Normalize and validate an origin key.

    Raises:
        ValidationError: If either part is blank.
    """
    if not isinstance(origin_type, str) or not origin_type.strip():
        raise ValidationError("origin_type must be a non-empty string")
    key_id = str(origin_id).strip() if origin_id is not None else ""
    if not key_id:
        raise ValidationError("origin_id must not be empty", origin_type=origin_type)
    return origin_type, key_id


def keywords(query: str) -> list[str]:
    """Split a query into casefolded keywords; blank queries yield none."""
    return [token.casefold() for token in query.split()]


class IndexStore:
    """Canonical store of search index entries.

    Thread-safe via a lock acquired with a timeout, so no single operation
    waits on the index longer than the configured bound. Every mutation is a
    single SQLite transaction: an entry is either fully written or untouched.

    Uniqueness of (origin_type, origin_id) is enforced by a unique index;
    two upserts for the same origin always converge on one entry.

    All operations share one SQLite connection behind one lock, so writes
    for different origins are serialized here rather than run in parallel.
    The coordinator still overlaps their projection and retry work.
    """

    def __init__(
        self,
        database_path: str = ":memory:",
        timeout: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize index store (call initialize() before use).

        Args:
            database_path: SQLite database file, or ":memory:".
            timeout: Seconds to wait for the store lock or a busy database.
            clock: Source of the current UTC time, for updated_at.
        """
        self._path = database_path
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def database_path(self) -> str:
        """SQLite database location."""
        return self._path

    @contextmanager
    def _locked(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Hold the store lock and translate SQLite failures.

        Raises:
            StorageError: On lock timeout, closed store, or any sqlite3.Error.
        """
        if not self._lock.acquire(timeout=self._timeout):
            raise StorageError(
                f"Timed out after {self._timeout}s waiting for the index store",
                operation=operation,
            )
        try:
            if self._conn is None:
                raise StorageError("Index store is not initialized", operation=operation)
            yield self._conn
        except sqlite3.Error as e:
            logger.warning("search_store_error", operation=operation, error=str(e))
            raise StorageError(str(e), operation=operation) from e
        finally:
            self._lock.release()

    def initialize(self) -> list[ConsistencyViolation]:
        """Open the database and create the schema.

        Databases written without the unique origin index may hold several
        entries for one origin; those are collapsed before the index is
        created.

        Returns:
            Duplicate-key violations found and repaired while opening;
            empty when the store is already open.

        Raises:
            StorageError: If the database cannot be opened.
        """
        with self._lock:
            if self._conn is not None:
                return []

        try:
            conn = sqlite3.connect(
                self._path, timeout=self._timeout, check_same_thread=False
            )
            conn.create_function("casefold", 1, _casefold, deterministic=True)
        except sqlite3.Error as e:
            raise StorageError(str(e), operation="initialize") from e

        with self._lock:
            self._conn = conn

        with self._locked("initialize") as conn, conn:
            conn.execute(_CREATE_TABLE)
            violations = self._collapse(conn)
            conn.execute(_CREATE_UNIQUE_ORIGIN)
            conn.execute(_CREATE_RECENCY)

        logger.info(
            "search_index_initialized",
            database_path=self._path,
            entry_count=self.count(),
            duplicates_collapsed=len(violations),
        )
        return violations

    def _next_timestamp(self, previous: datetime | None = None) -> datetime:
        """Current time, nudged forward so updated_at strictly advances."""
        now = self._clock().astimezone(UTC)
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def upsert(self, origin_type: str, origin_id: object, projection: Any) -> IndexEntry:
        """Create or refresh the entry for an origin record.

        Re-applying an unchanged projection leaves the entry (including
        updated_at) untouched.

        Args:
            origin_type: Registered record type.
            origin_id: Record identifier within its type.
            projection: Projection, or a mapping/object with title and body.

        Returns:
            The stored entry.

        Raises:
            ValidationError: If the key or projection is malformed.
            StorageError: If the write fails; nothing is written.
        """
        origin_type, origin_id = _origin_key(origin_type, origin_id)
        projected = coerce_projection(projection, origin_type, origin_id)

        with self._locked("upsert") as conn, conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM index_entries "
                "WHERE origin_type = ? AND origin_id = ?",
                (origin_type, origin_id),
            ).fetchone()

            if row is None:
                updated_at = self._next_timestamp()
                cursor = conn.execute(
                    "INSERT INTO index_entries "
                    "(title, body, origin_type, origin_id, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        projected.title,
                        projected.body,
                        origin_type,
                        origin_id,
                        _format_ts(updated_at),
                    ),
                )
                entry_id = cursor.lastrowid
                action = "created"
            else:
                current = _row_to_entry(row)
                if current.projection() == projected:
                    logger.debug(
                        "search_entry_unchanged",
                        origin_type=origin_type,
                        origin_id=origin_id,
                    )
                    return current
                updated_at = self._next_timestamp(current.updated_at)
                conn.execute(
                    "UPDATE index_entries SET title = ?, body = ?, updated_at = ? "
                    "WHERE id = ?",
                    (projected.title, projected.body, _format_ts(updated_at), current.id),
                )
                entry_id = current.id
                action = "updated"

        logger.info(
            f"search_entry_{action}",
            entry_id=entry_id,
            origin_type=origin_type,
            origin_id=origin_id,
        )
        return IndexEntry(
            id=entry_id,
            title=projected.title,
            body=projected.body,
            origin_type=origin_type,
            origin_id=origin_id,
            updated_at=updated_at,
        )

    def remove(self, origin_type: str, origin_id: object) -> bool:
        """Delete the entry for an origin record.

        Idempotent: removing an absent entry returns False.

        Raises:
            ValidationError: If the key is malformed.
            StorageError: If the delete fails.
        """
        origin_type, origin_id = _origin_key(origin_type, origin_id)

        with self._locked("remove") as conn, conn:
            cursor = conn.execute(
                "DELETE FROM index_entries WHERE origin_type = ? AND origin_id = ?",
                (origin_type, origin_id),
            )
            removed = cursor.rowcount > 0

        if removed:
            logger.info(
                "search_entry_removed", origin_type=origin_type, origin_id=origin_id
            )
        return removed

    def find(self, entry_id: int) -> IndexEntry:
        """Fetch an entry by id.

        Raises:
            NotFoundError: If no entry has this id.
            StorageError: If the read fails.
        """
        with self._locked("find") as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM index_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(entry_id)
        return _row_to_entry(row)

    def find_by_origin(self, origin_type: str, origin_id: object) -> IndexEntry | None:
        """Fetch the entry for an origin record, if indexed."""
        origin_type, origin_id = _origin_key(origin_type, origin_id)
        with self._locked("find_by_origin") as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM index_entries "
                "WHERE origin_type = ? AND origin_id = ? "
                "ORDER BY updated_at DESC, id DESC LIMIT 1",
                (origin_type, origin_id),
            ).fetchone()
        return _row_to_entry(row) if row is not None else None

    def search(
        self,
        query: str,
        origin_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[IndexEntry], int]:
        """Find entries matching every keyword of a query.

        A keyword matches when it is a case-insensitive substring of the
        title or the body. Results are ordered most recently updated first,
        ties broken by descending id.

        Args:
            query: Raw query text; split on whitespace.
            origin_type: Restrict to one record type.
            limit: Maximum entries to return.
            offset: Matching entries to skip.

        Returns:
            Tuple of (page of entries, total number of matches).
        """
        terms = keywords(query)
        if not terms:
            return [], 0

        clauses: list[str] = []
        params: list[Any] = []
        for term in terms:
            clauses.append(
                "(instr(casefold(title), ?) > 0 OR instr(casefold(body), ?) > 0)"
            )
            params.extend((term, term))
        if origin_type:
            clauses.append("origin_type = ?")
            params.append(origin_type)
        where = " AND ".join(clauses)

        with self._locked("search") as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM index_entries WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM index_entries WHERE {where} "
                "ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()

        return [_row_to_entry(row) for row in rows], total

    def entries(self, origin_type: str | None = None) -> list[IndexEntry]:
        """All entries, optionally of one record type, oldest id first."""
        with self._locked("entries") as conn:
            if origin_type is None:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM index_entries ORDER BY id"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM index_entries "
                    "WHERE origin_type = ? ORDER BY id",
                    (origin_type,),
                ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def keys(self, origin_type: str | None = None) -> set[OriginKey]:
        """Origin keys currently indexed."""
        return {entry.origin_key for entry in self.entries(origin_type)}

    def origin_types(self) -> list[str]:
        """Distinct record types present in the index, sorted."""
        with self._locked("origin_types") as conn:
            rows = conn.execute(
                "SELECT DISTINCT origin_type FROM index_entries ORDER BY origin_type"
            ).fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        """Number of entries in the index."""
        with self._locked("count") as conn:
            return conn.execute("SELECT COUNT(*) FROM index_entries").fetchone()[0]

    def ping(self) -> bool:
        """Check the store answers queries."""
        try:
            with self._locked("ping") as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except StorageError:
            return False

    def collapse_duplicates(self) -> list[ConsistencyViolation]:
        """Keep only the most recently updated entry per origin key.

        Returns:
            One violation per origin key that had duplicates.
        """
        with self._locked("collapse_duplicates") as conn, conn:
            return self._collapse(conn)

    def _collapse(self, conn: sqlite3.Connection) -> list[ConsistencyViolation]:
        """Collapse duplicate origin keys inside the caller's transaction."""
        groups = conn.execute(
            "SELECT origin_type, origin_id FROM index_entries "
            "GROUP BY origin_type, origin_id HAVING COUNT(*) > 1"
        ).fetchall()

        violations: list[ConsistencyViolation] = []
        for origin_type, origin_id in groups:
            ids = [
                row[0]
                for row in conn.execute(
                    "SELECT id FROM index_entries "
                    "WHERE origin_type = ? AND origin_id = ? "
                    "ORDER BY updated_at DESC, id DESC",
                    (origin_type, origin_id),
                )
            ]
            surplus = ids[1:]
            conn.executemany(
                "DELETE FROM index_entries WHERE id = ?", [(i,) for i in surplus]
            )
            violation = ConsistencyViolation("duplicate", origin_type, origin_id, ids)
            violations.append(violation)
            logger.warning(
                "search_consistency_violation",
                kept_entry_id=ids[0],
                removed_entry_ids=surplus,
                **violation.as_dict(),
            )
        return violations

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("search_index_closed")
