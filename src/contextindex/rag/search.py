"""Query engine: embed a natural-language query, return the closest chunks.

Request validation happens before the embedder is touched, so an empty query
never costs an embedding call. Results come back verbatim from the Index
Store's similarity search (already capped, thresholded and ordered).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from functools import partial

from contextindex.db.base import IndexStore
from contextindex.errors import EmbeddingUnavailable, InvalidArgument, InvalidQuery
from contextindex.ingest.embedder import Embedder
from contextindex.retry import RetryPolicy, call_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
DEFAULT_MIN_SIMILARITY = 0.7
MAX_RESULTS_CAP = 50


@dataclass(frozen=True)
class SearchRequest:
    """A validated search request.

    Attributes:
        query: Natural-language query; must contain non-whitespace text.
        max_results: Number of chunks to return at most, in [1, cap].
        min_similarity: Cosine similarity threshold in [0.0, 1.0].
    """

    query: str
    max_results: int = DEFAULT_MAX_RESULTS
    min_similarity: float = DEFAULT_MIN_SIMILARITY

    def validate(self, max_results_cap: int = MAX_RESULTS_CAP) -> None:
        """Raise InvalidQuery / InvalidArgument for malformed requests."""
        if not isinstance(self.query, str) or not self.query.strip():
            raise InvalidQuery("Query must not be empty.")
        if isinstance(self.max_results, bool) or not isinstance(self.max_results, int):
            raise InvalidArgument(f"max_results must be an integer, got {self.max_results!r}.")
        if not 1 <= self.max_results <= max_results_cap:
            raise InvalidArgument(
                f"max_results must be between 1 and {max_results_cap}, got {self.max_results}."
            )
        if isinstance(self.min_similarity, bool) or not isinstance(self.min_similarity, (int, float)):
            raise InvalidArgument(
                f"min_similarity must be a number, got {self.min_similarity!r}."
            )
        if math.isnan(self.min_similarity) or not 0.0 <= self.min_similarity <= 1.0:
            raise InvalidArgument(
                f"min_similarity must be between 0.0 and 1.0, got {self.min_similarity}."
            )


@dataclass(frozen=True)
class SearchResult:
    text: str
    source_id: str
    score: float
    file_path: str | None = None


@dataclass(frozen=True)
class SearchResponse:
    results: list[SearchResult] = field(default_factory=list)
    total_results: int = 0


class QueryEngine:
    """Semantic search over the Index Store.

    Args:
        store: Index Store to query.
        embedder: Must produce vectors of the store's dimension.
        retry: Backoff policy for the query embedding call.
        max_results_cap: Upper bound accepted for ``max_results``.
    """

    def __init__(
        self,
        store: IndexStore,
        embedder: Embedder,
        *,
        retry: RetryPolicy = RetryPolicy(),
        max_results_cap: int = MAX_RESULTS_CAP,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._retry = retry
        self._max_results_cap = max_results_cap

    def search(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> SearchResponse:
        """Return up to *max_results* chunks scoring at least *min_similarity*.

        Raises:
            InvalidQuery: Empty or whitespace-only query.
            InvalidArgument: max_results or min_similarity out of range.
            EmbeddingUnavailable: The query could not be embedded after retries.
        """
        request = SearchRequest(query, max_results, min_similarity)
        request.validate(self._max_results_cap)

        try:
            vector = call_with_backoff(
                partial(self._embedder.embed, request.query.strip()),
                self._retry,
                retry_on=(EmbeddingUnavailable,),
            )
        except EmbeddingUnavailable:
            logger.warning("Query embedding failed after %d attempts", self._retry.attempts)
            raise

        hits = self._store.similarity_search(
            vector, top_k=request.max_results, min_similarity=float(request.min_similarity)
        )
        logger.debug("Query matched %d chunks (min_similarity=%s)", len(hits), request.min_similarity)
        results = [
            SearchResult(
                text=hit.chunk.text,
                source_id=hit.chunk.source_id,
                score=hit.score,
                file_path=hit.chunk.file_path,
            )
            for hit in hits
        ]
        return SearchResponse(results=results, total_results=len(results))
