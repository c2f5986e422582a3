"""Operational endpoints for index reconciliation and sync status."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, HTTPException, Request

from unisearch.search.errors import StorageError
from unisearch.search.schemas import ReconcileReport, SyncStatus

if TYPE_CHECKING:
    from unisearch.search.coordinator import SyncCoordinator
    from unisearch.search.reconcile import Reconciler

logger = structlog.get_logger()

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/reconcile",
    response_model=ReconcileReport,
    summary="Run a reconciliation sweep",
    description="Repairs missing, stale, duplicate and orphaned index entries.",
)
async def reconcile(request: Request) -> ReconcileReport:
    """Run reconciliation now and report what was repaired.

    Raises:
        HTTPException: 503 if the index store is unavailable.
    """
    reconciler: Reconciler = request.app.state.reconciler
    logger.info("reconcile_requested")

    try:
        return await reconciler.reconcile()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@router.get(
    "/sync",
    response_model=SyncStatus,
    summary="Synchronization status",
)
async def sync_status(request: Request) -> SyncStatus:
    """Report coordinator counters, pending jobs and flagged keys."""
    coordinator: SyncCoordinator = request.app.state.coordinator
    return coordinator.status()
