"""Forward-only migration runner for the Cortex store.

The vector table is created here too, but its dimensionality lives in
``vec_meta`` and is pinned by the EmbeddingIndex on first open.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS file_records (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    path            TEXT NOT NULL UNIQUE,
    source_id       TEXT NOT NULL,
    lens            TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    error           TEXT,
    is_duplicate    INTEGER NOT NULL DEFAULT 0,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_file_records_status ON file_records(status);
CREATE INDEX IF NOT EXISTS idx_file_records_source ON file_records(source_id);

CREATE TABLE IF NOT EXISTS insights (
    id                TEXT PRIMARY KEY,
    file_id           INTEGER NOT NULL REFERENCES file_records(id) ON DELETE CASCADE,
    title             TEXT NOT NULL,
    content           TEXT NOT NULL,
    category          TEXT NOT NULL,
    lens              TEXT NOT NULL,
    confidence        REAL NOT NULL,
    tags              TEXT NOT NULL DEFAULT '[]',
    related_concepts  TEXT NOT NULL DEFAULT '[]',
    created_at        DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_insights_file ON insights(file_id);

CREATE TABLE IF NOT EXISTS file_hashes (
    path            TEXT PRIMARY KEY,
    content_hash    TEXT NOT NULL,
    size            INTEGER NOT NULL,
    mtime           REAL NOT NULL,
    indexed_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_file_hashes_content ON file_hashes(content_hash);

CREATE TABLE IF NOT EXISTS vec_insights (
    id              TEXT PRIMARY KEY,
    embedding       BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS vec_meta (
    key             TEXT PRIMARY KEY,
    value           TEXT NOT NULL
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0
