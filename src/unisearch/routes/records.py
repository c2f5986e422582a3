"""Record write endpoints for the bundled searchable record types.

Each write commits to the record's repository and returns immediately;
index synchronization follows asynchronously from the lifecycle event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Body, HTTPException, Request, Response, status
from pydantic import ValidationError

from unisearch.records.registry import UnknownRecordTypeError
from unisearch.records.repository import (
    DuplicateRecordError,
    InMemoryRecordRepository,
    RecordNotFoundError,
)

if TYPE_CHECKING:
    from unisearch.records.registry import SourceRegistry

logger = structlog.get_logger()

router = APIRouter(prefix="/records", tags=["records"])


def _repository(request: Request, origin_type: str) -> InMemoryRecordRepository[Any]:
    """Resolve the writable repository for a record type.

    Raises:
        HTTPException: 404 if the type is unknown or not writable here.
    """
    registry: SourceRegistry = request.app.state.registry
    try:
        source = registry.get(origin_type)
    except UnknownRecordTypeError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if not isinstance(source, InMemoryRecordRepository):
        raise HTTPException(
            status_code=404,
            detail=f"Record type is not writable through this API: {origin_type}",
        )
    return source


def _invalid(e: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=e.errors(include_url=False, include_context=False),
    )


@router.post("/{origin_type}", status_code=status.HTTP_201_CREATED)
async def create_record(
    request: Request,
    origin_type: str,
    fields: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    """Create a record; its index entry follows asynchronously."""
    repository = _repository(request, origin_type)
    try:
        record = await repository.create(fields)
    except ValidationError as e:
        raise _invalid(e) from e
    except DuplicateRecordError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return record.model_dump()


@router.get("/{origin_type}/{record_id}")
async def get_record(request: Request, origin_type: str, record_id: int) -> dict[str, Any]:
    """Fetch a record by id."""
    repository = _repository(request, origin_type)
    record = repository.get(record_id)
    if record is None:
        raise HTTPException(
            status_code=404, detail=f"{origin_type} not found: {record_id}"
        )
    return record.model_dump()


@router.put("/{origin_type}/{record_id}")
async def update_record(
    request: Request,
    origin_type: str,
    record_id: int,
    changes: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    """Update a record's fields; its index entry follows asynchronously."""
    repository = _repository(request, origin_type)
    try:
        record = await repository.update(record_id, changes)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValidationError as e:
        raise _invalid(e) from e
    return record.model_dump()


@router.delete("/{origin_type}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(request: Request, origin_type: str, record_id: int) -> Response:
    """Delete a record; its index entry is removed asynchronously."""
    repository = _repository(request, origin_type)
    if not await repository.delete(record_id):
        raise HTTPException(
            status_code=404, detail=f"{origin_type} not found: {record_id}"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
