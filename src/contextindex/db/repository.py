"""SQLite implementations of the Source Registry and Index Store.

Both wrap an open sqlite3.Connection (sqlite-vec loaded, schema initialised).
Similarity is computed by sqlite-vec's ``vec_distance_cosine`` scalar function
over the float32 BLOB column; cosine similarity = 1 - cosine distance, rounded
to SCORE_DECIMALS places so it matches the in-memory store. The
stored L2 norm lets zero vectors score 0.0 instead of dividing by zero.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from contextindex.config import ConfigError, DimensionMismatchError
from contextindex.db.base import IndexStore, SourceRegistry
from contextindex.db.models import Chunk, SearchHit, Source, SourceStatus
from contextindex.db.vectors import SCORE_DECIMALS, check_dimensions, deserialize, l2_norm, serialize
from contextindex.errors import AlreadyIndexing, Conflict, SourceNotFound, StorageUnavailable

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Transient SQLite failures worth retrying; everything else is a bug.
_TRANSIENT_MARKERS = ("locked", "busy")


@contextmanager
def _storage_errors() -> Iterator[None]:
    """Translate transient sqlite3 errors into StorageUnavailable."""
    try:
        yield
    except sqlite3.OperationalError as exc:
        if any(marker in str(exc).lower() for marker in _TRANSIENT_MARKERS):
            raise StorageUnavailable(f"Index storage unavailable: {exc}") from exc
        raise


class SqliteSourceRegistry(SourceRegistry):
    """Source records in the ``sources`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add_source(self, source: Source) -> None:
        created_at = source.created_at or datetime.now(timezone.utc)
        try:
            with _storage_errors(), self._conn:
                self._conn.execute(
                    """
                    INSERT INTO sources (id, location, status, last_indexed_at, error_message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source.id,
                        source.location,
                        source.status.value,
                        _format_ts(source.last_indexed_at),
                        source.error_message,
                        _format_ts(created_at),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise Conflict(f"Source '{source.id}' already exists.") from exc

    def get_source(self, source_id: str) -> Source | None:
        row = self._conn.execute(
            "SELECT id, location, status, last_indexed_at, error_message, created_at, indexing_started_at "
            "FROM sources WHERE id = ?",
            (source_id,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        rows = self._conn.execute(
            "SELECT id, location, status, last_indexed_at, error_message, created_at, indexing_started_at "
            "FROM sources ORDER BY created_at, id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def begin_indexing(
        self,
        source_id: str,
        started_at: datetime | None = None,
        stale_before: datetime | None = None,
    ) -> Source:
        stale = _format_ts(stale_before)
        with _storage_errors(), self._conn:
            cur = self._conn.execute(
                """
                UPDATE sources
                SET status = :indexing, error_message = NULL, indexing_started_at = :started
                WHERE id = :id
                  AND (status != :indexing
                       OR (:stale IS NOT NULL
                           AND (indexing_started_at IS NULL OR indexing_started_at < :stale)))
                """,
                {
                    "indexing": SourceStatus.INDEXING.value,
                    "started": _format_ts(started_at or datetime.now(timezone.utc)),
                    "id": source_id,
                    "stale": stale,
                },
            )
        if cur.rowcount == 0:
            if self.get_source(source_id) is None:
                raise SourceNotFound(source_id)
            raise AlreadyIndexing(source_id)
        source = self.get_source(source_id)
        if source is None:
            # deleted between the UPDATE and the read
            raise SourceNotFound(source_id)
        return source

    def mark_ready(self, source_id: str, indexed_at: datetime) -> None:
        with _storage_errors(), self._conn:
            self._conn.execute(
                "UPDATE sources SET status = ?, last_indexed_at = ?, error_message = NULL "
                "WHERE id = ?",
                (SourceStatus.READY.value, _format_ts(indexed_at), source_id),
            )

    def mark_failed(self, source_id: str, error_message: str) -> None:
        with _storage_errors(), self._conn:
            self._conn.execute(
                "UPDATE sources SET status = ?, error_message = ? WHERE id = ?",
                (SourceStatus.FAILED.value, error_message, source_id),
            )

    def delete_source(self, source_id: str) -> bool:
        """Delete the source row; chunks cascade via the foreign key."""
        with _storage_errors(), self._conn:
            cur = self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cur.rowcount > 0


class SqliteIndexStore(IndexStore):
    """Chunk rows + float32 embeddings in the ``chunks`` table.

    The embedding dimension (and optionally the model) is recorded in
    ``index_meta`` on first use. Opening an existing index with a different
    dimension raises DimensionMismatchError; with a different model,
    ConfigError — vectors from two models are not comparable.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        dimensions: int,
        model: str | None = None,
    ) -> None:
        self._conn = conn
        self._dimensions = dimensions
        self._check_index_meta(model)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        rows = []
        for chunk in chunks:
            if chunk.source_id != source_id:
                raise ValueError(
                    f"Chunk '{chunk.id}' belongs to source '{chunk.source_id}', "
                    f"not '{source_id}'."
                )
            check_dimensions(chunk.embedding, self._dimensions, f"Chunk '{chunk.id}' embedding")
            rows.append(
                (
                    chunk.id,
                    chunk.source_id,
                    chunk.sequence_index,
                    chunk.text,
                    serialize(chunk.embedding),
                    l2_norm(chunk.embedding),
                    _format_ts(chunk.created_at),
                    chunk.file_path,
                )
            )

        # Delete + insert in one transaction: readers see the old generation
        # or the new one, never both and never an empty window.
        with _storage_errors(), self._conn:
            self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
            self._conn.executemany(
                """
                INSERT INTO chunks (id, source_id, sequence_index, text, embedding, norm, created_at, file_path)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    def delete_source(self, source_id: str) -> int:
        with _storage_errors(), self._conn:
            cur = self._conn.execute("DELETE FROM chunks WHERE source_id = ?", (source_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        query_embedding: Sequence[float],
        top_k: int,
        min_similarity: float,
    ) -> list[SearchHit]:
        check_dimensions(query_embedding, self._dimensions, "Query embedding")
        if top_k < 1:
            return []

        query_norm = l2_norm(query_embedding)
        with _storage_errors():
            rows = self._conn.execute(
                """
                SELECT id, source_id, sequence_index, text, embedding, created_at, file_path, score
                FROM (
                    SELECT c.*,
                           CASE WHEN c.norm = 0 OR :qnorm = 0 THEN 0.0
                                ELSE ROUND(1.0 - vec_distance_cosine(c.embedding, :query), :decimals)
                           END AS score
                    FROM chunks c
                )
                WHERE score >= :min_similarity
                ORDER BY score DESC, created_at DESC, id ASC
                LIMIT :top_k
                """,
                {
                    "qnorm": query_norm,
                    "query": serialize(query_embedding),
                    "decimals": SCORE_DECIMALS,
                    "min_similarity": min_similarity,
                    "top_k": top_k,
                },
            ).fetchall()
        return [SearchHit(chunk=_row_to_chunk(r), score=float(r["score"])) for r in rows]

    def count_chunks(self, source_id: str | None = None) -> int:
        if source_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def list_chunks(self, source_id: str) -> list[Chunk]:
        rows = self._conn.execute(
            "SELECT id, source_id, sequence_index, text, embedding, created_at, file_path "
            "FROM chunks WHERE source_id = ? ORDER BY sequence_index",
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    # ------------------------------------------------------------------
    # Index metadata
    # ------------------------------------------------------------------

    def _check_index_meta(self, model: str | None) -> None:
        meta = {
            r["key"]: r["value"]
            for r in self._conn.execute("SELECT key, value FROM index_meta").fetchall()
        }

        stored_dims = meta.get("embedding_dimensions")
        if stored_dims is not None and int(stored_dims) != self._dimensions:
            raise DimensionMismatchError(
                f"Index was built with embedding dimension {stored_dims}, "
                f"but dimension {self._dimensions} is configured. "
                "Re-create the index or restore the original embedding config."
            )

        stored_model = meta.get("embedding_model")
        if model is not None and stored_model is not None and stored_model != model:
            raise ConfigError(
                f"Embedding model mismatch: index uses '{stored_model}', "
                f"config has '{model}'. Re-index all sources or update the config."
            )

        with self._conn:
            if stored_dims is None:
                self._conn.execute(
                    "INSERT OR IGNORE INTO index_meta (key, value) VALUES ('embedding_dimensions', ?)",
                    (str(self._dimensions),),
                )
            if model is not None and stored_model is None:
                self._conn.execute(
                    "INSERT OR IGNORE INTO index_meta (key, value) VALUES ('embedding_model', ?)",
                    (model,),
                )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.strptime(value, _TS_FORMAT).replace(tzinfo=timezone.utc)


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        location=row["location"],
        status=SourceStatus(row["status"]),
        last_indexed_at=_parse_ts(row["last_indexed_at"]),
        error_message=row["error_message"],
        created_at=_parse_ts(row["created_at"]),
        indexing_started_at=_parse_ts(row["indexing_started_at"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        sequence_index=row["sequence_index"],
        text=row["text"],
        embedding=deserialize(row["embedding"]),
        created_at=_parse_ts(row["created_at"]),
        file_path=row["file_path"],
    )
