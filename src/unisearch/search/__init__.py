"""Unified search index with event-driven synchronization."""

from unisearch.search.coordinator import SyncCoordinator, SyncOutcome
from unisearch.search.errors import (
    ConsistencyViolation,
    NotFoundError,
    SearchIndexError,
    StorageError,
    ValidationError,
)
from unisearch.search.query import QueryEngine
from unisearch.search.reconcile import Reconciler, run_reconcile_schedule
from unisearch.search.schemas import (
    IndexEntry,
    Projection,
    ReconcileReport,
    SearchResponse,
    SearchResult,
    SyncStatus,
)
from unisearch.search.store import IndexStore
from unisearch.search.subscriber import run_sync_subscriber

__all__ = [
    "ConsistencyViolation",
    "IndexEntry",
    "IndexStore",
    "NotFoundError",
    "Projection",
    "QueryEngine",
    "ReconcileReport",
    "Reconciler",
    "SearchIndexError",
    "SearchResponse",
    "SearchResult",
    "StorageError",
    "SyncCoordinator",
    "SyncOutcome",
    "SyncStatus",
    "ValidationError",
    "run_reconcile_schedule",
    "run_sync_subscriber",
]
