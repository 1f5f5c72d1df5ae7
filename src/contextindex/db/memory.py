"""In-memory Source Registry and Index Store.

Drop-in substitutes for the SQLite implementations (tests, one-off scripts).
A lock makes every method atomic, so the begin_indexing guard behaves like the
SQLite compare-and-set under threads.
"""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Sequence
from datetime import datetime, timezone

from contextindex.db.base import IndexStore, SourceRegistry
from contextindex.db.models import Chunk, SearchHit, Source, SourceStatus
from contextindex.db.vectors import check_dimensions, similarity_score
from contextindex.errors import AlreadyIndexing, Conflict, SourceNotFound


class MemorySourceRegistry(SourceRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: dict[str, Source] = {}

    def add_source(self, source: Source) -> None:
        with self._lock:
            if source.id in self._sources:
                raise Conflict(f"Source '{source.id}' already exists.")
            created_at = source.created_at or datetime.now(timezone.utc)
            self._sources[source.id] = dataclasses.replace(source, created_at=created_at)

    def get_source(self, source_id: str) -> Source | None:
        with self._lock:
            source = self._sources.get(source_id)
            return dataclasses.replace(source) if source else None

    def list_sources(self) -> list[Source]:
        with self._lock:
            ordered = sorted(self._sources.values(), key=lambda s: (s.created_at, s.id))
            return [dataclasses.replace(s) for s in ordered]

    def begin_indexing(
        self,
        source_id: str,
        started_at: datetime | None = None,
        stale_before: datetime | None = None,
    ) -> Source:
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise SourceNotFound(source_id)
            if source.status is SourceStatus.INDEXING and not _abandoned(source, stale_before):
                raise AlreadyIndexing(source_id)
            source.status = SourceStatus.INDEXING
            source.error_message = None
            source.indexing_started_at = started_at or datetime.now(timezone.utc)
            return dataclasses.replace(source)

    def mark_ready(self, source_id: str, indexed_at: datetime) -> None:
        with self._lock:
            source = self._sources.get(source_id)
            if source is not None:
                source.status = SourceStatus.READY
                source.last_indexed_at = indexed_at
                source.error_message = None

    def mark_failed(self, source_id: str, error_message: str) -> None:
        with self._lock:
            source = self._sources.get(source_id)
            if source is not None:
                source.status = SourceStatus.FAILED
                source.error_message = error_message

    def delete_source(self, source_id: str) -> bool:
        with self._lock:
            return self._sources.pop(source_id, None) is not None


class MemoryIndexStore(IndexStore):
    def __init__(self, dimensions: int) -> None:
        self._dimensions = dimensions
        self._lock = threading.Lock()
        self._chunks: dict[str, list[Chunk]] = {}

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def upsert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        for chunk in chunks:
            if chunk.source_id != source_id:
                raise ValueError(
                    f"Chunk '{chunk.id}' belongs to source '{chunk.source_id}', "
                    f"not '{source_id}'."
                )
            check_dimensions(chunk.embedding, self._dimensions, f"Chunk '{chunk.id}' embedding")
        with self._lock:
            self._chunks[source_id] = list(chunks)

    def delete_source(self, source_id: str) -> int:
        with self._lock:
            return len(self._chunks.pop(source_id, []))

    def similarity_search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        min_similarity: float,
    ) -> list[SearchHit]:
        check_dimensions(query_embedding, self._dimensions, "Query embedding")
        with self._lock:
            candidates = [c for chunks in self._chunks.values() for c in chunks]

        hits = [SearchHit(chunk=c, score=similarity_score(query_embedding, c.embedding)) for c in candidates]
        hits = [h for h in hits if h.score >= min_similarity]
        # id ascending, then newer first, then best score first (stable sorts)
        hits.sort(key=lambda h: h.chunk.id)
        hits.sort(key=lambda h: h.chunk.created_at, reverse=True)
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: max(top_k, 0)]

    def count_chunks(self, source_id: str | None = None) -> int:
        with self._lock:
            if source_id is None:
                return sum(len(chunks) for chunks in self._chunks.values())
            return len(self._chunks.get(source_id, []))

    def list_chunks(self, source_id: str) -> list[Chunk]:
        with self._lock:
            return sorted(self._chunks.get(source_id, []), key=lambda c: c.sequence_index)


def _abandoned(source: Source, stale_before: datetime | None) -> bool:
    if stale_before is None:
        return False
    return source.indexing_started_at is None or source.indexing_started_at < stale_before
