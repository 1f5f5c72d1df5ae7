"""Tests for LiteLLMEmbedder and API-key validation (litellm mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from contextindex.config import ConfigError, DimensionMismatchError, EmbeddingCfg
from contextindex.errors import EmbeddingUnavailable
from contextindex.ingest.embedder import LiteLLMEmbedder, validate_api_key


def _response(vector: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [{"embedding": vector}]
    return response


@pytest.fixture
def openai_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


def test_from_config():
    embedder = LiteLLMEmbedder.from_config(EmbeddingCfg(model="openai/text-embedding-3-large", dimensions=3072))
    assert embedder.model == "openai/text-embedding-3-large"
    assert embedder.dimensions == 3072


def test_embed_calls_litellm(openai_key):
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", dimensions=3)
    with patch("contextindex.ingest.embedder.litellm.embedding", return_value=_response([0.1, 0.2, 0.3])) as mock:
        vector = embedder.embed("hello")
    assert vector == [0.1, 0.2, 0.3]
    mock.assert_called_once_with(model="openai/text-embedding-3-small", input=["hello"])


def test_embed_passes_request_timeout(openai_key):
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", dimensions=3)
    with patch("contextindex.ingest.embedder.litellm.embedding", return_value=_response([0.1, 0.2, 0.3])) as mock:
        embedder.embed("hello", timeout=2.5)
    mock.assert_called_once_with(model="openai/text-embedding-3-small", input=["hello"], timeout=2.5)


def test_upstream_failure_becomes_embedding_unavailable(openai_key):
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", dimensions=3)
    with patch("contextindex.ingest.embedder.litellm.embedding", side_effect=RuntimeError("429 rate limit")):
        with pytest.raises(EmbeddingUnavailable, match="429 rate limit"):
            embedder.embed("hello")


def test_wrong_output_length_is_fatal(openai_key):
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", dimensions=4)
    with patch("contextindex.ingest.embedder.litellm.embedding", return_value=_response([0.1, 0.2])):
        with pytest.raises(DimensionMismatchError):
            embedder.embed("hello")


def test_missing_api_key_is_config_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", dimensions=3)
    with patch("contextindex.ingest.embedder.litellm.embedding") as mock:
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            embedder.embed("hello")
    mock.assert_not_called()


def test_validate_api_key_local_provider_needs_no_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_bare_model_means_openai(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigError, match="'openai'"):
        validate_api_key("text-embedding-3-small")


def test_validate_api_key_unknown_provider_passes():
    validate_api_key("someprovider/model")
