"""contextindex — semantic search and content indexing for context sources."""

from contextindex.api import ContextService
from contextindex.errors import (
    AlreadyIndexing,
    ContextIndexError,
    EmbeddingUnavailable,
    FetchError,
    InvalidArgument,
    SourceNotFound,
)

__all__ = [
    "AlreadyIndexing",
    "ContextIndexError",
    "ContextService",
    "EmbeddingUnavailable",
    "FetchError",
    "InvalidArgument",
    "SourceNotFound",
]
