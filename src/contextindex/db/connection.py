"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

_BUSY_TIMEOUT_SECONDS = 5.0


class Database:
    """Index database file with sqlite-vec vector functions loaded.

    Every request (search, reindex, admin action) opens its own connection;
    connections are never shared between threads.
    """

    def __init__(self, db_path: Path | str, timeout: float = _BUSY_TIMEOUT_SECONDS) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing),
                or ``":memory:"``.
            timeout: Seconds to wait on a locked database before the write
                fails with ``sqlite3.OperationalError``.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
