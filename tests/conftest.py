"""Shared pytest fixtures."""

from __future__ import annotations

import pytest
import yaml
from fakes import DIMS, DictFetcher, FixedClock, KeywordEmbedder

from contextindex.config import ContextIndexConfig, EmbeddingCfg, RetryCfg
from contextindex.db.connection import Database
from contextindex.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".contextindex.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def fetcher() -> DictFetcher:
    return DictFetcher()


@pytest.fixture
def test_config() -> ContextIndexConfig:
    """Default config with the fake embedder's dimension and no retry delay."""
    cfg = ContextIndexConfig()
    cfg.embedding = EmbeddingCfg(model="test/keyword", dimensions=DIMS)
    cfg.retry = RetryCfg(attempts=3, base_delay=0.0)
    return cfg


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """CWD with a contextindex.yaml for the keyword embedder; no global config, no network."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("contextindex.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("CONTEXTINDEX_EMBEDDING_MODEL", "CONTEXTINDEX_DB", "CONTEXTINDEX_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "contextindex.yaml").write_text(
        yaml.dump(
            {
                "embedding": {"model": "test/keyword", "dimensions": DIMS},
                "retry": {"base_delay": 0},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setattr(
        "contextindex.cli.common.make_embedder",
        lambda cfg: KeywordEmbedder(cfg.embedding.dimensions),
    )
    return tmp_path
