"""contextindex query side: semantic search over indexed chunks."""

from contextindex.rag.search import QueryEngine, SearchRequest, SearchResponse, SearchResult

__all__ = [
    "QueryEngine",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
]
