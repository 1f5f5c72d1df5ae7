"""contextindex ingest pipeline: fetcher, chunker, embedder, indexing run."""

from contextindex.ingest.chunker import TextChunk, TextChunker
from contextindex.ingest.embedder import Embedder, LiteLLMEmbedder
from contextindex.ingest.fetcher import Document, SourceFetcher
from contextindex.ingest.pipeline import IndexingPipeline, IndexingResult

__all__ = [
    "Document",
    "Embedder",
    "IndexingPipeline",
    "IndexingResult",
    "LiteLLMEmbedder",
    "SourceFetcher",
    "TextChunk",
    "TextChunker",
]
