"""Indexing pipeline — fetch → chunk → embed → upsert → mark source status.

State machine per source:

    PENDING ──► INDEXING ──► READY
                  │   ▲        │
                  ▼   │        │ (manual refresh)
                FAILED ◄───────┘

The INDEXING transition is an atomic compare-and-set in the Source Registry;
it is the only mutual exclusion between concurrent re-index requests for the
same source. A run whose start is older than its timeout plus a grace period
is abandoned and may be taken over. Failures after that transition are
recorded on the source (status FAILED + error_message) and returned as an
``IndexingResult``, so they stay observable after the caller has gone. Only a
vector dimension mismatch and interpreter interrupts are re-raised, after the
source has been marked FAILED.

Chunks are committed only after every chunk embedded successfully; a failed
run leaves the previous chunk set serving queries.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial

from contextindex.clock import CancelToken, Clock, utc_now
from contextindex.config import ConfigError, DimensionMismatchError
from contextindex.db.base import IndexStore, SourceRegistry
from contextindex.db.models import Chunk, Source, SourceStatus
from contextindex.db.vectors import check_dimensions
from contextindex.errors import (
    ContextIndexError,
    EmbeddingUnavailable,
    FetchError,
    IndexingCancelled,
    InternalError,
    SourceNotFound,
    StorageUnavailable,
)
from contextindex.ingest.chunker import TextChunk, TextChunker
from contextindex.ingest.embedder import Embedder
from contextindex.ingest.fetcher import Document, SourceFetcher
from contextindex.retry import RetryPolicy, call_with_backoff

logger = logging.getLogger(__name__)

# A run older than its timeout plus this grace is considered abandoned
# (crashed process) and may be taken over by a new run.
_STALE_GRACE = timedelta(seconds=60)


def _new_chunk_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class IndexingResult:
    """Outcome of one reindex run."""

    source_id: str
    success: bool
    status: SourceStatus
    message: str
    chunk_count: int = 0
    error_code: str | None = None


class IndexingPipeline:
    """Orchestrates one re-index run of a source.

    Args:
        registry: Source Registry (status transitions).
        store: Index Store (the pipeline is its only chunk writer).
        embedder: Embedder whose dimension must equal the store's.
        fetcher: Object with ``fetch(location, cancel) -> list[Document]``.
        chunker: TextChunker used to split each fetched document.
        retry: Backoff policy for embedding and storage calls.
        clock: Source/Chunk timestamp source.
        new_id: Chunk id factory (fresh ids per run).
        timeout: Seconds before a run is cancelled; None for no deadline.
            An INDEXING source whose run started more than this (plus a
            grace period) ago is treated as abandoned.

    Raises:
        DimensionMismatchError: embedder and store disagree on D.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: IndexStore,
        embedder: Embedder,
        fetcher: SourceFetcher,
        chunker: TextChunker,
        *,
        retry: RetryPolicy = RetryPolicy(),
        clock: Clock = utc_now,
        new_id: Callable[[], str] = _new_chunk_id,
        timeout: float | None = None,
    ) -> None:
        if embedder.dimensions != store.dimensions:
            raise DimensionMismatchError(
                f"Embedder produces dimension {embedder.dimensions}, "
                f"index store expects {store.dimensions}."
            )
        self._registry = registry
        self._store = store
        self._embedder = embedder
        self._fetcher = fetcher
        self._chunker = chunker
        self._retry = retry
        self._clock = clock
        self._new_id = new_id
        self._timeout = timeout

    def is_abandoned(self, source: Source) -> bool:
        """True if *source* is INDEXING but its run has outlived the timeout."""
        if source.status is not SourceStatus.INDEXING:
            return False
        stale_before = self._stale_before(self._clock())
        if stale_before is None:
            return False
        return source.indexing_started_at is None or source.indexing_started_at < stale_before

    def reindex(self, source_id: str, cancel: CancelToken | None = None) -> IndexingResult:
        """Run the full pipeline for *source_id*.

        Raises:
            SourceNotFound: Unknown source (registry untouched).
            AlreadyIndexing: Another live run holds the source.
            DimensionMismatchError: Embedding length differs from the index;
                the source is marked FAILED first.
        """
        existing = self._registry.get_source(source_id)
        if existing is None:
            raise SourceNotFound(source_id)
        started_at = self._clock()
        source = self._registry.begin_indexing(
            source_id, started_at=started_at, stale_before=self._stale_before(started_at)
        )
        if existing.status is SourceStatus.INDEXING:
            logger.warning(
                "Source %s: taking over a run abandoned since %s", source_id, existing.indexing_started_at
            )
        cancel = cancel or CancelToken(self._timeout)
        logger.info("Indexing source %s (%s)", source_id, source.location)

        step = "fetch"
        try:
            documents = self._fetcher.fetch(source.location, cancel)
            cancel.raise_if_cancelled(step)

            step = "chunk"
            pieces = self._chunk_all(documents)
            logger.debug("Source %s: %d chunks from %d documents", source_id, len(pieces), len(documents))

            step = "embed"
            chunks = self._embed_all(source_id, pieces, cancel)
            cancel.raise_if_cancelled(step)

            step = "store"
            call_with_backoff(
                partial(self._store.upsert_chunks, source_id, chunks),
                self._retry,
                retry_on=(StorageUnavailable,),
                cancel=cancel,
            )
        except DimensionMismatchError as exc:
            self._mark_failed(source_id, f"Configuration error during {step}: {exc}")
            raise
        except ConfigError as exc:
            return self._failed(source_id, InternalError(f"Configuration error during {step}: {exc}"))
        except IndexingCancelled as exc:
            return self._failed(source_id, exc)
        except FetchError as exc:
            return self._failed(source_id, FetchError(f"Fetch failed: {exc.message}"))
        except EmbeddingUnavailable as exc:
            return self._failed(source_id, exc)
        except StorageUnavailable as exc:
            return self._failed(source_id, StorageUnavailable(f"Storing chunks failed: {exc.message}"))
        except Exception:
            logger.exception("Unexpected failure indexing source %s during %s", source_id, step)
            return self._failed(source_id, InternalError(f"Internal error during {step}."))
        except BaseException:
            # KeyboardInterrupt / SystemExit: release the source, then let it propagate
            self._mark_failed(source_id, f"Indexing interrupted during {step}.")
            raise

        try:
            call_with_backoff(
                partial(self._registry.mark_ready, source_id, self._clock()),
                self._retry,
                retry_on=(StorageUnavailable,),
            )
        except StorageUnavailable as exc:
            return self._failed(source_id, StorageUnavailable(f"Could not mark source ready: {exc.message}"))

        logger.info("Source %s READY with %d chunks", source_id, len(chunks))
        return IndexingResult(
            source_id=source_id,
            success=True,
            status=SourceStatus.READY,
            message=f"Indexed {len(chunks)} chunks from '{source.location}'.",
            chunk_count=len(chunks),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _chunk_all(self, documents: list[Document]) -> list[tuple[str | None, TextChunk]]:
        """Chunk each document separately so no chunk spans two files."""
        return [(doc.path, piece) for doc in documents for piece in self._chunker.chunk(doc.text)]

    def _embed_all(
        self, source_id: str, pieces: list[tuple[str | None, TextChunk]], cancel: CancelToken
    ) -> list[Chunk]:
        """Embed every piece; the first failure aborts the whole run."""
        created_at = self._clock()
        chunks: list[Chunk] = []
        for sequence_index, (file_path, piece) in enumerate(pieces):
            cancel.raise_if_cancelled("embed")
            try:
                vector = call_with_backoff(
                    lambda: self._embedder.embed(piece.text, timeout=cancel.remaining()),
                    self._retry,
                    retry_on=(EmbeddingUnavailable,),
                    cancel=cancel,
                )
            except EmbeddingUnavailable as exc:
                raise EmbeddingUnavailable(
                    f"Embedding failed for chunk {sequence_index}: {exc.message}"
                ) from exc
            check_dimensions(vector, self._store.dimensions, f"Chunk {sequence_index} embedding")
            chunks.append(
                Chunk(
                    id=self._new_id(),
                    source_id=source_id,
                    sequence_index=sequence_index,
                    text=piece.text,
                    embedding=vector,
                    created_at=created_at,
                    file_path=file_path,
                )
            )
        return chunks

    def _stale_before(self, now: datetime) -> datetime | None:
        if self._timeout is None:
            return None
        return now - timedelta(seconds=self._timeout) - _STALE_GRACE

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def _failed(self, source_id: str, error: ContextIndexError) -> IndexingResult:
        logger.warning("Indexing source %s failed (%s): %s", source_id, error.code, error.message)
        self._mark_failed(source_id, error.message)
        return IndexingResult(
            source_id=source_id,
            success=False,
            status=SourceStatus.FAILED,
            message=error.message,
            error_code=error.code,
        )

    def _mark_failed(self, source_id: str, message: str) -> None:
        try:
            call_with_backoff(
                partial(self._registry.mark_failed, source_id, message),
                self._retry,
                retry_on=(StorageUnavailable,),
            )
        except StorageUnavailable:
            logger.exception("Could not record failure for source %s; it may remain INDEXING", source_id)
