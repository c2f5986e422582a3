"""Unified search API endpoints."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query, Request

from unisearch.search.errors import NotFoundError, StorageError
from unisearch.search.schemas import IndexEntry, SearchResponse

if TYPE_CHECKING:
    from unisearch.search.query import QueryEngine

router = APIRouter(prefix="/search", tags=["search"])


@router.get(
    "",
    response_model=SearchResponse,
    summary="Search across every searchable record type",
    description=(
        "Case-insensitive keyword search over titles and bodies. Every keyword "
        "must match; results are ordered most recently updated first."
    ),
)
async def search(
    request: Request,
    q: str = Query(
        ...,
        min_length=1,
        max_length=200,
        description="Search query string",
    ),
    type: str | None = Query(
        default=None,
        max_length=64,
        description="Restrict results to one record type",
    ),
    limit: int | None = Query(default=None, ge=1, le=100, description="Results per page"),
    offset: int = Query(default=0, ge=0, description="Results to skip"),
) -> SearchResponse:
    """Search the unified index.

    Args:
        request: FastAPI request (provides access to app state).
        q: Search query string (1-200 characters).
        type: Optional origin type filter.
        limit: Maximum results per page (1-100, configured default).
        offset: Pagination offset (default 0).

    Returns:
        Paginated results carrying origin type and id of each match.
    """
    engine: QueryEngine = request.app.state.query_engine

    try:
        return await asyncio.to_thread(
            engine.search, q, origin_type=type, limit=limit, offset=offset
        )
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@router.get(
    "/entries/{entry_id}",
    response_model=IndexEntry,
    summary="Get one index entry",
)
async def get_entry(request: Request, entry_id: int) -> IndexEntry:
    """Fetch an index entry by id.

    Raises:
        HTTPException: 404 if the entry does not exist.
    """
    engine: QueryEngine = request.app.state.query_engine

    try:
        return await asyncio.to_thread(engine.get_entry, entry_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
