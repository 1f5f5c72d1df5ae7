"""Tests for contextindex reindex command."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from contextindex.cli.main import app
from contextindex.db.connection import Database
from contextindex.db.models import SourceStatus
from contextindex.db.repository import SqliteIndexStore, SqliteSourceRegistry

runner = CliRunner()


def _register(location: str, source_id: str) -> None:
    result = runner.invoke(app, ["add", "-l", location, "--id", source_id])
    assert result.exit_code == 0, result.output


def test_reindex_no_db_exits_1(cli_project: Path) -> None:
    result = runner.invoke(app, ["reindex", "anything"])

    assert result.exit_code == 1
    assert "No index database found" in result.output


def test_reindex_unknown_source_exits_1(cli_project: Path) -> None:
    _register("notes.md", "notes")

    result = runner.invoke(app, ["reindex", "missing-id"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_reindex_indexes_file(cli_project: Path) -> None:
    (cli_project / "notes.md").write_text("Fish live in the river.", encoding="utf-8")
    _register("notes.md", "notes")

    result = runner.invoke(app, ["reindex", "notes"])

    assert result.exit_code == 0, result.output
    assert "Indexed 1 chunks" in result.output
    conn = Database(cli_project / ".contextindex.db").connect()
    assert SqliteSourceRegistry(conn).get_source("notes").status is SourceStatus.READY
    assert SqliteIndexStore(conn, 8).count_chunks("notes") == 1


def test_reindex_replaces_chunks(cli_project: Path) -> None:
    doc = cli_project / "notes.md"
    doc.write_text("Fish live in the river.", encoding="utf-8")
    _register("notes.md", "notes")
    runner.invoke(app, ["reindex", "notes"])

    doc.write_text("Birds fly.", encoding="utf-8")
    result = runner.invoke(app, ["reindex", "notes"])

    assert result.exit_code == 0, result.output
    conn = Database(cli_project / ".contextindex.db").connect()
    chunks = SqliteIndexStore(conn, 8).list_chunks("notes")
    assert [c.text for c in chunks] == ["Birds fly."]


def test_reindex_failure_exits_1(cli_project: Path) -> None:
    _register("missing.md", "gone")

    result = runner.invoke(app, ["reindex", "gone"])

    assert result.exit_code == 1
    assert "Fetch failed" in result.output


def test_reindex_while_indexing_exits_1(cli_project: Path) -> None:
    _register("notes.md", "notes")
    conn = Database(cli_project / ".contextindex.db").connect()
    SqliteSourceRegistry(conn).begin_indexing("notes")
    conn.close()

    result = runner.invoke(app, ["reindex", "notes"])

    assert result.exit_code == 1
    assert "already being indexed" in result.output


def test_reindex_rejects_non_positive_timeout(cli_project: Path) -> None:
    result = runner.invoke(app, ["reindex", "notes", "--timeout", "0"])
    assert result.exit_code == 2
