"""Shared CLI plumbing: logging setup, config and database opening."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from contextindex.api import ContextService
from contextindex.cli.errors import err_config, err_no_db
from contextindex.config import ConfigError, ContextIndexConfig, load_config
from contextindex.db.connection import Database
from contextindex.ingest.embedder import Embedder, LiteLLMEmbedder

console = Console()
err_console = Console(stderr=True)


def setup_logging(level: str) -> None:
    """Route library log records through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # LiteLLM and urllib3 are chatty at INFO
    for noisy in ("LiteLLM", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, logging.getLogger().level))


def get_config(ctx: typer.Context) -> ContextIndexConfig:
    """Return the config loaded by the app callback (or load it now)."""
    if isinstance(ctx.obj, ContextIndexConfig):
        return ctx.obj
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    ctx.obj = cfg
    return cfg


def resolve_db(db: Path | None, cfg: ContextIndexConfig) -> Path:
    return db if db is not None else Path(cfg.database.path)


def make_embedder(cfg: ContextIndexConfig) -> Embedder:
    return LiteLLMEmbedder.from_config(cfg.embedding)


def open_db(db_path: Path, *, must_exist: bool = True) -> sqlite3.Connection:
    if must_exist and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return Database(db_path).connect()


def open_service(conn: sqlite3.Connection, cfg: ContextIndexConfig) -> ContextService:
    """Build the service; configuration problems end the command with exit 1."""
    try:
        return ContextService.open(conn, cfg, embedder=make_embedder(cfg))
    except ConfigError as exc:
        conn.close()
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
