"""Searchable record sources and their registry."""

from unisearch.records.registry import RecordSource, SourceRegistry, UnknownRecordTypeError
from unisearch.records.repository import (
    DuplicateRecordError,
    InMemoryRecordRepository,
    RecordNotFoundError,
)
from unisearch.records.schemas import Person, Post, project_person, project_post

__all__ = [
    "DuplicateRecordError",
    "InMemoryRecordRepository",
    "Person",
    "Post",
    "RecordNotFoundError",
    "RecordSource",
    "SourceRegistry",
    "UnknownRecordTypeError",
    "project_person",
    "project_post",
]
