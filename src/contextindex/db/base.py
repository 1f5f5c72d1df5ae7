"""Storage interfaces: Source Registry and Index Store.

Components receive these as explicit dependencies; the SQLite implementations
live in ``contextindex.db.repository`` and in-memory ones in
``contextindex.db.memory``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from contextindex.db.models import Chunk, SearchHit, Source


class SourceRegistry(ABC):
    """Tracks known sources and their indexing status."""

    @abstractmethod
    def add_source(self, source: Source) -> None:
        """Register a new source. Raises Conflict if the id is taken."""

    @abstractmethod
    def get_source(self, source_id: str) -> Source | None:
        """Return the source or None."""

    @abstractmethod
    def list_sources(self) -> list[Source]:
        """Return all sources, oldest registration first."""

    @abstractmethod
    def begin_indexing(
        self,
        source_id: str,
        started_at: datetime | None = None,
        stale_before: datetime | None = None,
    ) -> Source:
        """Atomically move *source_id* to INDEXING and return it.

        This compare-and-set is the per-source mutual exclusion guard.
        *started_at* (default: now) is recorded as ``indexing_started_at``.
        With *stale_before* set, an INDEXING row whose run started before that
        instant (or whose start is unknown) is treated as abandoned and taken over.

        Raises:
            SourceNotFound: No such source (nothing is modified).
            AlreadyIndexing: The source is already INDEXING.
        """

    @abstractmethod
    def mark_ready(self, source_id: str, indexed_at: datetime) -> None:
        """INDEXING → READY; sets last_indexed_at and clears error_message."""

    @abstractmethod
    def mark_failed(self, source_id: str, error_message: str) -> None:
        """INDEXING → FAILED with *error_message* recorded."""

    @abstractmethod
    def delete_source(self, source_id: str) -> bool:
        """Delete the source record. Returns False if it did not exist."""


class IndexStore(ABC):
    """Persists chunks with embeddings of fixed dimension; cosine similarity search."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Embedding dimension D every stored vector must have."""

    @abstractmethod
    def upsert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        """Replace all chunks of *source_id* with *chunks*.

        Raises:
            DimensionMismatchError: A chunk embedding is not of length D.
            ValueError: A chunk belongs to a different source.
            StorageUnavailable: Transient storage failure.
        """

    @abstractmethod
    def delete_source(self, source_id: str) -> int:
        """Delete every chunk of *source_id*; return how many were removed."""

    @abstractmethod
    def similarity_search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        min_similarity: float,
    ) -> list[SearchHit]:
        """Return up to *top_k* chunks with cosine similarity >= *min_similarity*.

        Ordered by score descending, then newer created_at, then id ascending.
        A zero-norm vector has similarity 0.0 with every other vector.
        """

    @abstractmethod
    def count_chunks(self, source_id: str | None = None) -> int:
        """Chunk count for one source, or for the whole index."""

    @abstractmethod
    def list_chunks(self, source_id: str) -> list[Chunk]:
        """Chunks of *source_id* in sequence_index order."""
