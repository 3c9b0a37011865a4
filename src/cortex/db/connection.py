"""SQLite connection factory for the Cortex store.

One connection per process: the daemon writes, CLI commands read. WAL mode
lets a reader run while the daemon holds a write transaction.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

# Applied to every new connection, in order.
PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)

BUSY_TIMEOUT_SECONDS = 30.0


class Database:
    """Location of a Cortex database file.

    Args:
        db_path: Path to the SQLite file; it and its parent directories are
            created on first connect.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with ``sqlite3.Row`` rows and PRAGMAS applied."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        for pragma in PRAGMAS:
            conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
