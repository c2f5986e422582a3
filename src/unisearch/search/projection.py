"""Mapping from typed records to their canonical searchable projection."""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from unisearch.records.registry import RecordSource
from unisearch.search.errors import ValidationError
from unisearch.search.schemas import Projection


def coerce_projection(
    value: Any,
    origin_type: str | None = None,
    origin_id: str | None = None,
) -> Projection:
    """Validate a mapper's output into a Projection.

    Args:
        value: A Projection, a mapping with "title" and "body", or an object
            exposing those attributes.
        origin_type: Record type, for error context.
        origin_id: Record identifier, for error context.

    Returns:
        Validated projection with surrounding whitespace stripped.

    Raises:
        ValidationError: If a field is missing, None, or not a string.
    """
    if isinstance(value, Projection):
        return value

    if isinstance(value, Mapping):
        data = dict(value)
    elif hasattr(value, "title") and hasattr(value, "body"):
        data = {"title": value.title, "body": value.body}
    else:
        raise ValidationError(
            f"Projection must provide title and body, got {type(value).__name__}",
            origin_type=origin_type,
            origin_id=origin_id,
        )

    try:
        return Projection.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed projection",
            origin_type=origin_type,
            origin_id=origin_id,
            errors=[dict(err) for err in e.errors(include_url=False)],
        ) from e


def project_record(source: RecordSource, record: Any) -> Projection:
    """Compute the projection of a record through its registered source.

    Args:
        source: Source that owns the record's type.
        record: Record instance.

    Returns:
        Validated projection.

    Raises:
        ValidationError: If the mapping fails or returns malformed fields.
    """
    origin_type = source.origin_type
    try:
        origin_id = source.record_id(record)
    except Exception as e:
        raise ValidationError(
            f"Cannot identify {origin_type} record: {e}",
            origin_type=origin_type,
        ) from e

    try:
        raw = source.project(record)
    except Exception as e:
        raise ValidationError(
            f"Projection of {origin_type} record failed: {e}",
            origin_type=origin_type,
            origin_id=origin_id,
        ) from e

    return coerce_projection(raw, origin_type=origin_type, origin_id=origin_id)
