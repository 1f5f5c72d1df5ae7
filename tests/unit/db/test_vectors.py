"""Tests for embedding vector helpers."""

from __future__ import annotations

import math

import pytest

from contextindex.config import DimensionMismatchError
from contextindex.db.vectors import (
    check_dimensions,
    cosine_similarity,
    deserialize,
    l2_norm,
    serialize,
)


def test_serialize_is_float32_blob():
    blob = serialize([1.0, 2.0, 3.0])
    assert isinstance(blob, bytes)
    assert len(blob) == 12


def test_deserialize_restores_values():
    assert deserialize(serialize([0.5, -1.25, 4.0])) == [0.5, -1.25, 4.0]


def test_l2_norm():
    assert l2_norm([3.0, 4.0]) == 5.0
    assert l2_norm([0.0, 0.0]) == 0.0


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        ([1.0, 0.0], [1.0, 0.0], 1.0),
        ([1.0, 0.0], [0.0, 1.0], 0.0),
        ([1.0, 0.0], [-1.0, 0.0], -1.0),
        ([1.0, 1.0], [1.0, 0.0], 1 / math.sqrt(2)),
    ],
)
def test_cosine_similarity(a, b, expected):
    assert cosine_similarity(a, b) == pytest.approx(expected)


def test_cosine_similarity_zero_norm_is_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) == 0.0


def test_check_dimensions():
    check_dimensions([0.0] * 4, 4)
    with pytest.raises(DimensionMismatchError, match="dimension 3"):
        check_dimensions([0.0] * 3, 4, "Query embedding")
