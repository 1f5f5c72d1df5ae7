"""Operations facade: caller-shaped entry points over the pipeline and engine.

Each method validates its input, delegates to the Indexing Pipeline, Query
Engine or Source Registry, and returns a plain dict ready to serialise:

  trigger_reindex(source_id)           → {"success", "message"}
  search(query, ...)                   → {"chunks": [...], "totalResults"}
  register_source(location, ...)       → {"sourceId", "status"}
  remove_source(source_id)             → {"success", "chunksDeleted", "message"}
  get_stats()                          → {"totalSources", "totalChunks", "indexingStatus"}

Authorization is decided outside this module; callers that deny a request
raise ``contextindex.errors.PermissionDenied`` themselves.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any

from contextindex.clock import CancelToken, Clock, utc_now
from contextindex.config import ContextIndexConfig
from contextindex.db.base import IndexStore, SourceRegistry
from contextindex.db.models import Source, SourceStatus
from contextindex.db.repository import SqliteIndexStore, SqliteSourceRegistry
from contextindex.db.schema import initialize
from contextindex.errors import AlreadyIndexing, InvalidArgument, SourceNotFound
from contextindex.ingest.chunker import TextChunker
from contextindex.ingest.embedder import Embedder, LiteLLMEmbedder
from contextindex.ingest.fetcher import SourceFetcher
from contextindex.ingest.pipeline import IndexingPipeline
from contextindex.rag.search import QueryEngine
from contextindex.retry import RetryPolicy

logger = logging.getLogger(__name__)


class ContextService:
    """Context-source administration and semantic search.

    Args:
        registry: Source Registry.
        store: Index Store; its dimension must match the embedder's.
        embedder: Shared by indexing and querying.
        fetcher: Resolves source locations; defaults to SourceFetcher(config.fetch).
        chunker: Defaults to TextChunker.from_config(config.chunking).
        config: Search defaults, retry policy and indexing timeout.
        clock: Timestamp source for registration and indexing.

    Raises:
        DimensionMismatchError: embedder and store disagree on the dimension.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        store: IndexStore,
        embedder: Embedder,
        fetcher: SourceFetcher | None = None,
        chunker: TextChunker | None = None,
        *,
        config: ContextIndexConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config or ContextIndexConfig()
        self._registry = registry
        self._store = store
        self._clock = clock

        retry = RetryPolicy.from_config(self._config.retry)
        self._pipeline = IndexingPipeline(
            registry,
            store,
            embedder,
            fetcher or SourceFetcher(self._config.fetch),
            chunker or TextChunker.from_config(self._config.chunking),
            retry=retry,
            clock=clock,
            timeout=self._config.indexing.timeout_seconds,
        )
        self._engine = QueryEngine(
            store,
            embedder,
            retry=retry,
            max_results_cap=self._config.search.max_results_cap,
        )

    @classmethod
    def open(
        cls,
        conn: sqlite3.Connection,
        config: ContextIndexConfig | None = None,
        embedder: Embedder | None = None,
        **kwargs: Any,
    ) -> ContextService:
        """Build a service over an open SQLite connection (schema is initialised).

        Without an explicit *embedder*, a LiteLLMEmbedder is built from
        ``config.embedding`` and its model name is pinned in the index.
        """
        cfg = config or ContextIndexConfig()
        initialize(conn)
        if embedder is None:
            embedder = LiteLLMEmbedder.from_config(cfg.embedding)
        model = embedder.model if isinstance(embedder, LiteLLMEmbedder) else None
        store = SqliteIndexStore(conn, cfg.embedding.dimensions, model=model)
        return cls(SqliteSourceRegistry(conn), store, embedder, config=cfg, **kwargs)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def trigger_reindex(self, source_id: str, cancel: CancelToken | None = None) -> dict[str, Any]:
        """Re-index *source_id* now and report the outcome.

        Unknown sources, a run already in progress and pipeline failures
        (including configuration problems such as a missing API key) are
        reported as ``{"success": False, "message": ...}``.

        Raises:
            InvalidArgument: Blank source id.
            DimensionMismatchError: The embedder returned vectors of the
                wrong length; the source is marked FAILED first.
        """
        source_id = _require_text(source_id, "sourceId")
        try:
            result = self._pipeline.reindex(source_id, cancel=cancel)
        except (SourceNotFound, AlreadyIndexing) as exc:
            logger.info("Reindex of %s rejected: %s", source_id, exc.message)
            return {"success": False, "message": exc.message}
        return {"success": result.success, "message": result.message}

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        max_results: int | None = None,
        min_similarity: float | None = None,
    ) -> dict[str, Any]:
        """Semantic search; defaults come from the ``search:`` config section.

        Raises:
            InvalidArgument: Blank query or out-of-range parameters.
            EmbeddingUnavailable: The query could not be embedded.
        """
        response = self._engine.search(
            query,
            max_results=self._config.search.max_results if max_results is None else max_results,
            min_similarity=(
                self._config.search.min_similarity if min_similarity is None else min_similarity
            ),
        )
        return {
            "chunks": [
                {"text": r.text, "sourceId": r.source_id, "filePath": r.file_path, "score": r.score}
                for r in response.results
            ],
            "totalResults": response.total_results,
        }

    # ------------------------------------------------------------------
    # Source administration
    # ------------------------------------------------------------------

    def register_source(self, location: str, source_id: str | None = None) -> dict[str, Any]:
        """Register a new PENDING source. Indexing starts with trigger_reindex().

        Raises:
            InvalidArgument: Blank location or blank explicit id.
            Conflict: *source_id* is already registered.
        """
        location = _require_text(location, "location")
        source_id = str(uuid.uuid4()) if source_id is None else _require_text(source_id, "sourceId")
        self._registry.add_source(
            Source(id=source_id, location=location, created_at=self._clock())
        )
        logger.info("Registered source %s (%s)", source_id, location)
        return {"sourceId": source_id, "status": SourceStatus.PENDING.value}

    def remove_source(self, source_id: str) -> dict[str, Any]:
        """Delete a source and all of its chunks.

        Raises:
            InvalidArgument: Blank source id.
        """
        source_id = _require_text(source_id, "sourceId")
        source = self._registry.get_source(source_id)
        if source is None:
            return {"success": False, "chunksDeleted": 0, "message": SourceNotFound(source_id).message}
        if self.is_busy(source):
            return {
                "success": False,
                "chunksDeleted": 0,
                "message": f"Source '{source_id}' is being indexed; try again when the run finishes.",
            }

        deleted = self._store.delete_source(source_id)
        self._registry.delete_source(source_id)
        logger.info("Removed source %s and %d chunks", source_id, deleted)
        return {
            "success": True,
            "chunksDeleted": deleted,
            "message": f"Removed source and {deleted} associated chunks",
        }

    def is_busy(self, source: Source) -> bool:
        """True while a live (not abandoned) indexing run holds *source*."""
        return source.status is SourceStatus.INDEXING and not self._pipeline.is_abandoned(source)

    def get_stats(self) -> dict[str, Any]:
        """Source and chunk counts plus per-source indexing status."""
        sources = self._registry.list_sources()
        status = [
            {
                "sourceId": s.id,
                "location": s.location,
                "status": s.status.value,
                "lastIndexedAt": _iso(s.last_indexed_at),
                "errorMessage": s.error_message,
                "chunkCount": self._store.count_chunks(s.id),
            }
            for s in sources
        ]
        return {
            "totalSources": len(sources),
            "totalChunks": self._store.count_chunks(),
            "indexingStatus": status,
        }


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} is required")
    return value.strip()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
