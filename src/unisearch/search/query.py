"""Read-only query engine over the search index."""

import structlog

from unisearch.search.schemas import IndexEntry, SearchResponse, SearchResult
from unisearch.search.store import IndexStore

logger = structlog.get_logger()

MAX_LIMIT = 100


class QueryEngine:
    """Answers search queries with results traceable to their records.

    Matching is delegated to the store. Results are not checked against
    their origin records: an entry whose record was just deleted may still
    be returned until synchronization or reconciliation removes it, which
    keeps query latency independent of every record type's storage.
    """

    def __init__(self, store: IndexStore, default_limit: int = 20) -> None:
        self._store = store
        self._default_limit = default_limit

    def search(
        self,
        query: str,
        origin_type: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchResponse:
        """Search titles and bodies across every record type.

        Args:
            query: Keywords; every one must appear in the title or body.
            origin_type: Restrict results to one record type.
            limit: Page size, capped at MAX_LIMIT.
            offset: Number of results to skip.

        Returns:
            Results ordered most recently updated first.
        """
        page = limit if limit is not None else self._default_limit
        page = max(1, min(page, MAX_LIMIT))
        offset = max(0, offset)

        entries, total = self._store.search(
            query, origin_type=origin_type, limit=page, offset=offset
        )
        logger.debug(
            "search_query",
            query=query,
            origin_type=origin_type,
            total=total,
            returned=len(entries),
        )
        return SearchResponse(
            query=query,
            results=[SearchResult.from_entry(entry) for entry in entries],
            total=total,
            limit=page,
            offset=offset,
        )

    def get_entry(self, entry_id: int) -> IndexEntry:
        """Fetch one entry by id.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        return self._store.find(entry_id)
