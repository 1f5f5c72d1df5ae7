"""contextindex storage layer."""

from contextindex.db.base import IndexStore, SourceRegistry
from contextindex.db.connection import Database
from contextindex.db.memory import MemoryIndexStore, MemorySourceRegistry
from contextindex.db.migrations import MIGRATIONS, run_migrations
from contextindex.db.repository import SqliteIndexStore, SqliteSourceRegistry
from contextindex.db.schema import initialize

__all__ = [
    "Database",
    "IndexStore",
    "MIGRATIONS",
    "MemoryIndexStore",
    "MemorySourceRegistry",
    "SourceRegistry",
    "SqliteIndexStore",
    "SqliteSourceRegistry",
    "initialize",
    "run_migrations",
]
