"""Tests for contextindex add command."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from contextindex.cli.main import app
from contextindex.db.connection import Database
from contextindex.db.models import SourceStatus
from contextindex.db.repository import SqliteSourceRegistry

runner = CliRunner()


def _registry(project: Path) -> SqliteSourceRegistry:
    return SqliteSourceRegistry(Database(project / ".contextindex.db").connect())


def test_add_creates_database_and_registers(cli_project: Path) -> None:
    result = runner.invoke(app, ["add", "--location", "notes.md", "--id", "notes"])

    assert result.exit_code == 0, result.output
    assert "Registered" in result.output
    assert (cli_project / ".contextindex.db").exists()
    source = _registry(cli_project).get_source("notes")
    assert source is not None
    assert source.status is SourceStatus.PENDING
    assert source.location == "notes.md"


def test_add_generates_id(cli_project: Path) -> None:
    result = runner.invoke(app, ["add", "-l", "notes.md"])

    assert result.exit_code == 0, result.output
    sources = _registry(cli_project).list_sources()
    assert len(sources) == 1
    assert len(sources[0].id) == 36


def test_add_duplicate_id_exits_1(cli_project: Path) -> None:
    runner.invoke(app, ["add", "-l", "a.md", "--id", "dup"])
    result = runner.invoke(app, ["add", "-l", "b.md", "--id", "dup"])

    assert result.exit_code == 1
    assert "already exists" in result.output


def test_add_blank_location_exits_1(cli_project: Path) -> None:
    result = runner.invoke(app, ["add", "-l", "   "])

    assert result.exit_code == 1
    assert "invalid-argument" in result.output


def test_add_with_index(cli_project: Path) -> None:
    (cli_project / "notes.md").write_text("Cats and dogs are mammals.", encoding="utf-8")

    result = runner.invoke(app, ["add", "-l", "notes.md", "--id", "notes", "--index"])

    assert result.exit_code == 0, result.output
    assert "Indexed 1 chunks" in result.output
    assert _registry(cli_project).get_source("notes").status is SourceStatus.READY


def test_add_with_index_reports_fetch_failure(cli_project: Path) -> None:
    result = runner.invoke(app, ["add", "-l", "missing.md", "--id", "gone", "--index"])

    assert result.exit_code == 1
    assert "Fetch failed" in result.output
    assert _registry(cli_project).get_source("gone").status is SourceStatus.FAILED


def test_add_respects_db_option(cli_project: Path) -> None:
    target = cli_project / "elsewhere.db"
    result = runner.invoke(app, ["add", "-l", "notes.md", "--db", str(target)])

    assert result.exit_code == 0, result.output
    assert target.exists()
    assert not (cli_project / ".contextindex.db").exists()
