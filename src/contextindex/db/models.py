"""Domain models for the index database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceStatus(str, Enum):
    PENDING = "PENDING"
    INDEXING = "INDEXING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass
class Source:
    id: str
    location: str
    status: SourceStatus = SourceStatus.PENDING
    last_indexed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    indexing_started_at: datetime | None = None


@dataclass(frozen=True)
class Chunk:
    """One embedded slice of a source. Immutable; replaced wholesale on re-index."""

    id: str
    source_id: str
    sequence_index: int
    text: str
    embedding: list[float] = field(repr=False)
    created_at: datetime
    file_path: str | None = None


@dataclass(frozen=True)
class SearchHit:
    """A chunk returned by similarity search with its cosine similarity."""

    chunk: Chunk
    score: float
