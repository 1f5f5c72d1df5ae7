"""Tests for the ContextService operations facade."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from fakes import DIMS, FIXED_NOW, DictFetcher, FixedClock, FlakyEmbedder, KeywordEmbedder

from contextindex.api import ContextService
from contextindex.config import ConfigError, ContextIndexConfig, DimensionMismatchError, EmbeddingCfg
from contextindex.db.memory import MemoryIndexStore, MemorySourceRegistry
from contextindex.db.models import SourceStatus
from contextindex.errors import Conflict, EmbeddingUnavailable, InvalidArgument, InvalidQuery
from contextindex.ingest.fetcher import Document


@pytest.fixture
def documents(tmp_path: Path) -> dict[str, str]:
    animals = tmp_path / "animals.md"
    animals.write_text("Cats are mammals. Dogs are mammals too.", encoding="utf-8")
    machines = tmp_path / "machines.md"
    machines.write_text("Engines run on code.", encoding="utf-8")
    return {"animals": str(animals), "machines": str(machines)}


@pytest.fixture
def service(tmp_db, test_config, clock) -> ContextService:
    return ContextService.open(tmp_db, test_config, embedder=KeywordEmbedder(), clock=clock)


# ------------------------------------------------------------------
# register_source
# ------------------------------------------------------------------


def test_register_source_returns_pending(service):
    created = service.register_source("docs/a.md", "a")
    assert created == {"sourceId": "a", "status": "PENDING"}


def test_register_source_generates_id(service):
    created = service.register_source("docs/a.md")
    assert len(created["sourceId"]) == 36


@pytest.mark.parametrize("location", ["", "   ", None])
def test_register_source_requires_location(service, location):
    with pytest.raises(InvalidArgument):
        service.register_source(location)


def test_register_duplicate_id_conflicts(service):
    service.register_source("a.md", "a")
    with pytest.raises(Conflict):
        service.register_source("b.md", "a")


# ------------------------------------------------------------------
# trigger_reindex
# ------------------------------------------------------------------


def test_trigger_reindex_success(service, documents):
    service.register_source(documents["animals"], "animals")
    outcome = service.trigger_reindex("animals")
    assert outcome["success"] is True
    assert "Indexed 1 chunks" in outcome["message"]


def test_trigger_reindex_missing_id_reports_not_found(service):
    outcome = service.trigger_reindex("missing-id")
    assert outcome["success"] is False
    assert "not found" in outcome["message"]
    assert service.get_stats()["totalSources"] == 0


@pytest.mark.parametrize("source_id", ["", "  ", None])
def test_trigger_reindex_requires_id(service, source_id):
    with pytest.raises(InvalidArgument) as excinfo:
        service.trigger_reindex(source_id)
    assert excinfo.value.code == "invalid-argument"


def test_trigger_reindex_fetch_failure_reported(service, tmp_path):
    service.register_source(str(tmp_path / "gone.md"), "gone")
    outcome = service.trigger_reindex("gone")
    assert outcome["success"] is False
    assert outcome["message"].startswith("Fetch failed:")

    status = service.get_stats()["indexingStatus"][0]
    assert status["status"] == "FAILED"
    assert status["errorMessage"] == outcome["message"]


def test_trigger_reindex_while_indexing_reports_failure(test_config):
    registry = MemorySourceRegistry()
    service = ContextService(
        registry, MemoryIndexStore(DIMS), KeywordEmbedder(), DictFetcher({"a.md": "cats"}), config=test_config
    )
    service.register_source("a.md", "a")
    registry.begin_indexing("a")

    outcome = service.trigger_reindex("a")
    assert outcome == {"success": False, "message": "Source 'a' is already being indexed."}



def test_trigger_reindex_missing_api_key_reported(test_config):
    class KeylessEmbedder(KeywordEmbedder):
        def embed(self, text, *, timeout=None):
            raise ConfigError("API key not found: set OPENAI_API_KEY.")

    service = ContextService(
        MemorySourceRegistry(), MemoryIndexStore(DIMS), KeylessEmbedder(), DictFetcher({"a.md": "cats"}), config=test_config
    )
    service.register_source("a.md", "a")
    outcome = service.trigger_reindex("a")
    assert outcome["success"] is False
    assert outcome["message"].startswith("Configuration error during embed")
    assert service.get_stats()["indexingStatus"][0]["status"] == "FAILED"

# ------------------------------------------------------------------
# search
# ------------------------------------------------------------------


def test_search_after_indexing(service, documents):
    service.register_source(documents["animals"], "animals")
    service.register_source(documents["machines"], "machines")
    service.trigger_reindex("animals")
    service.trigger_reindex("machines")

    result = service.search("code engines", min_similarity=0.5)
    assert result["totalResults"] == 1
    assert result["chunks"][0]["sourceId"] == "machines"
    assert result["chunks"][0]["text"] == "Engines run on code."
    assert result["chunks"][0]["score"] == pytest.approx(1.0, abs=1e-6)
    assert result["chunks"][0]["filePath"] is None


def test_search_low_similarity_returns_empty(service, documents):
    service.register_source(documents["animals"], "animals")
    service.trigger_reindex("animals")
    assert service.search("river fish") == {"chunks": [], "totalResults": 0}


def test_search_blank_query_is_invalid_argument(service):
    with pytest.raises(InvalidArgument) as excinfo:
        service.search("   ")
    assert isinstance(excinfo.value, InvalidQuery)


def test_search_defaults_come_from_config(tmp_db, test_config, documents):
    test_config.search.min_similarity = 0.0
    test_config.search.max_results = 1
    service = ContextService.open(tmp_db, test_config, embedder=KeywordEmbedder())
    service.register_source(documents["animals"], "animals")
    service.register_source(documents["machines"], "machines")
    service.trigger_reindex("animals")
    service.trigger_reindex("machines")

    assert service.search("anything")["totalResults"] == 1


def test_search_embedding_failure_propagates(test_config):
    service = ContextService(
        MemorySourceRegistry(), MemoryIndexStore(DIMS), FlakyEmbedder(failures=None), DictFetcher(), config=test_config
    )
    with pytest.raises(EmbeddingUnavailable):
        service.search("cats")


# ------------------------------------------------------------------
# remove_source + get_stats
# ------------------------------------------------------------------


def test_remove_source_deletes_chunks(service, documents):
    service.register_source(documents["animals"], "animals")
    service.trigger_reindex("animals")

    outcome = service.remove_source("animals")
    assert outcome == {
        "success": True,
        "chunksDeleted": 1,
        "message": "Removed source and 1 associated chunks",
    }
    assert service.get_stats() == {"totalSources": 0, "totalChunks": 0, "indexingStatus": []}


def test_remove_unknown_source(service):
    outcome = service.remove_source("nope")
    assert outcome["success"] is False
    assert outcome["chunksDeleted"] == 0
    assert "not found" in outcome["message"]


def test_remove_refused_while_indexing(test_config):
    registry = MemorySourceRegistry()
    store = MemoryIndexStore(DIMS)
    service = ContextService(registry, store, KeywordEmbedder(), DictFetcher(), config=test_config)
    service.register_source("a.md", "a")
    registry.begin_indexing("a")

    outcome = service.remove_source("a")
    assert outcome["success"] is False
    assert registry.get_source("a").status is SourceStatus.INDEXING


def test_remove_allowed_for_abandoned_run(test_config):
    registry = MemorySourceRegistry()
    store = MemoryIndexStore(DIMS)
    service = ContextService(
        registry, store, KeywordEmbedder(), DictFetcher(), config=test_config, clock=FixedClock(step=timedelta(0))
    )
    service.register_source("a.md", "a")
    registry.begin_indexing("a", started_at=FIXED_NOW - timedelta(hours=1))
    assert service.is_busy(registry.get_source("a")) is False

    outcome = service.remove_source("a")
    assert outcome["success"] is True
    assert registry.get_source("a") is None


def test_search_reports_file_path(test_config):
    fetcher = DictFetcher(
        {"repo": [Document("Cats are mammals.", path="animals.md"), Document("Engines run on code.", path="engines.md")]}
    )
    service = ContextService(MemorySourceRegistry(), MemoryIndexStore(DIMS), KeywordEmbedder(), fetcher, config=test_config)
    service.register_source("repo", "repo")
    service.trigger_reindex("repo")

    result = service.search("engines code", min_similarity=0.5)
    assert [(c["sourceId"], c["filePath"]) for c in result["chunks"]] == [("repo", "engines.md")]


def test_get_stats(service, documents, tmp_path):
    service.register_source(documents["animals"], "animals")
    service.register_source(str(tmp_path / "missing.md"), "missing")
    service.trigger_reindex("animals")
    service.trigger_reindex("missing")

    stats = service.get_stats()
    assert stats["totalSources"] == 2
    assert stats["totalChunks"] == 1
    by_id = {s["sourceId"]: s for s in stats["indexingStatus"]}
    assert by_id["animals"]["status"] == "READY"
    assert by_id["animals"]["chunkCount"] == 1
    assert by_id["animals"]["lastIndexedAt"].startswith("2024-05-01T12:00")
    assert by_id["animals"]["errorMessage"] is None
    assert by_id["missing"]["status"] == "FAILED"
    assert by_id["missing"]["lastIndexedAt"] is None


# ------------------------------------------------------------------
# Construction
# ------------------------------------------------------------------


def test_open_rejects_embedder_of_other_dimension(tmp_db):
    cfg = ContextIndexConfig()
    cfg.embedding = EmbeddingCfg(model="test/keyword", dimensions=DIMS + 2)
    with pytest.raises(DimensionMismatchError):
        ContextService.open(tmp_db, cfg, embedder=KeywordEmbedder())


def test_open_uses_clock_for_registration(tmp_db, test_config):
    clock = FixedClock()
    service = ContextService.open(tmp_db, test_config, embedder=KeywordEmbedder(), clock=clock)
    service.register_source("a.md", "a")
    service.register_source("b.md", "b")
    assert [s["sourceId"] for s in service.get_stats()["indexingStatus"]] == ["a", "b"]
