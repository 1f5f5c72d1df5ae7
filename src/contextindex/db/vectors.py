"""Embedding vector helpers: float32 serialization, norms, cosine similarity."""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence

from sqlite_vec import serialize_float32

from contextindex.config import DimensionMismatchError

# Scores are rounded so float32 (sqlite-vec) and float64 (Python) agree at thresholds.
SCORE_DECIMALS = 6


def serialize(embedding: Sequence[float]) -> bytes:
    """Pack *embedding* into the compact float32 BLOB format sqlite-vec reads."""
    return serialize_float32(list(embedding))


def deserialize(blob: bytes) -> list[float]:
    """Unpack a float32 BLOB written by serialize()."""
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob))


def l2_norm(embedding: Sequence[float]) -> float:
    return math.sqrt(sum(x * x for x in embedding))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    norm_a = l2_norm(a)
    norm_b = l2_norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (norm_a * norm_b)


def similarity_score(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity rounded to SCORE_DECIMALS places."""
    return round(cosine_similarity(a, b), SCORE_DECIMALS)


def check_dimensions(embedding: Sequence[float], dimensions: int, what: str = "embedding") -> None:
    """Raise DimensionMismatchError unless *embedding* has exactly *dimensions* floats."""
    if len(embedding) != dimensions:
        raise DimensionMismatchError(
            f"{what} has dimension {len(embedding)}, but the index is configured "
            f"for dimension {dimensions}. Check embedding.model / embedding.dimensions."
        )
