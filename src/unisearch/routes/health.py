"""Health check endpoints for liveness and readiness probes."""
from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

if TYPE_CHECKING:
    from unisearch.search.coordinator import SyncCoordinator
    from unisearch.search.store import IndexStore

router = APIRouter(prefix="/health", tags=["health"])


class LivenessResponse(BaseModel):
    """Response model for liveness probe.

    Attributes:
        status: Always 'alive' when process is running.
    """

    status: Literal["alive"]


class ReadinessCheck(BaseModel):
    """Individual dependency check result.

    Attributes:
        name: Identifier for the dependency being checked.
        status: Result of the check ('ok' or 'failed').
        message: Error details when status is 'failed'.
    """

    name: str
    status: Literal["ok", "failed"]
    message: str | None = None


class ReadinessResponse(BaseModel):
    """Response model for readiness probe.

    Attributes:
        status: Overall readiness ('ready' or 'not_ready').
        checks: List of individual dependency check results.
    """

    status: Literal["ready", "not_ready"]
    checks: list[ReadinessCheck]


async def _check_store(store: IndexStore) -> ReadinessCheck:
    """Verify the index store answers queries."""
    if await asyncio.to_thread(store.ping):
        return ReadinessCheck(name="index_store", status="ok")
    return ReadinessCheck(
        name="index_store",
        status="failed",
        message=f"Index store unavailable: {store.database_path}",
    )


def _check_coordinator(coordinator: SyncCoordinator) -> ReadinessCheck:
    """Verify the sync coordinator workers are running."""
    if coordinator.running:
        return ReadinessCheck(name="sync_coordinator", status="ok")
    return ReadinessCheck(
        name="sync_coordinator",
        status="failed",
        message="Sync workers are not running",
    )


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe endpoint.

    Returns immediate success if the process is running.

    Returns:
        Liveness status response.
    """
    return LivenessResponse(status="alive")


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> JSONResponse:
    """Readiness probe endpoint.

    Validates the index store and the sync workers. Returns 200 if all
    checks pass, 503 if any fail.

    Returns:
        Readiness status with individual check results.
    """
    checks = [
        await _check_store(request.app.state.store),
        _check_coordinator(request.app.state.coordinator),
    ]
    all_ok = all(c.status == "ok" for c in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        checks=checks,
    )
    code = status.HTTP_200_OK if all_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response.model_dump(), status_code=code)
