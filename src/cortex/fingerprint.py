"""Content fingerprints for change and duplicate detection.

Two flavours:
  quick  — SHA-256 of ``inode:size:mtime_ns`` (stat only, not content based)
  deep   — SHA-256 of the file bytes

Decisions that gate model calls always use the deep fingerprint: byte-identical
content must never be reprocessed, whatever its mtime says.
"""

from __future__ import annotations

import hashlib
import os
import sqlite3
from pathlib import Path

from cortex.db.models import Fingerprint
from cortex.errors import IOUnavailable

_BLOCK_SIZE = 65536


def quick_fingerprint(path: str | Path) -> Fingerprint:
    """Stat-only fingerprint. Cheap, but blind to content."""
    st = _stat(path)
    digest = hashlib.sha256(f"{st.st_ino}:{st.st_size}:{st.st_mtime_ns}".encode()).hexdigest()
    return Fingerprint(path=str(path), content_hash=digest, size=st.st_size, mtime=st.st_mtime)


def deep_fingerprint(path: str | Path) -> Fingerprint:
    """Content fingerprint: SHA-256 of the file bytes."""
    st = _stat(path)
    h = hashlib.sha256()
    try:
        with open(path, "rb") as fh:
            for block in iter(lambda: fh.read(_BLOCK_SIZE), b""):
                h.update(block)
    except (FileNotFoundError, IsADirectoryError, PermissionError) as exc:
        raise IOUnavailable(str(path), str(exc)) from exc
    return Fingerprint(path=str(path), content_hash=h.hexdigest(), size=st.st_size, mtime=st.st_mtime)


def _stat(path: str | Path) -> os.stat_result:
    try:
        return os.stat(path)
    except (FileNotFoundError, PermissionError) as exc:
        raise IOUnavailable(str(path), str(exc)) from exc


class FingerprintStore:
    """Fingerprint rows in ``file_hashes``: at most one per path.

    The same hash may appear under many paths; those paths are duplicates.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, path: str) -> Fingerprint | None:
        row = self._conn.execute(
            "SELECT path, content_hash, size, mtime FROM file_hashes WHERE path = ?", (path,)
        ).fetchone()
        if row is None:
            return None
        return Fingerprint(
            path=row["path"], content_hash=row["content_hash"], size=row["size"], mtime=row["mtime"]
        )

    def has_changed(self, path: str, content_hash: str) -> bool:
        """True if *path* has no recorded fingerprint or a different hash."""
        row = self._conn.execute(
            "SELECT content_hash FROM file_hashes WHERE path = ?", (path,)
        ).fetchone()
        if row is None:
            return True
        return row["content_hash"] != content_hash

    def is_duplicate(self, content_hash: str, exclude_path: str | None = None) -> bool:
        """True if a path other than *exclude_path* already has *content_hash*."""
        if exclude_path is None:
            row = self._conn.execute(
                "SELECT 1 FROM file_hashes WHERE content_hash = ? LIMIT 1", (content_hash,)
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT 1 FROM file_hashes WHERE content_hash = ? AND path != ? LIMIT 1",
                (content_hash, exclude_path),
            ).fetchone()
        return row is not None

    def save(self, fingerprint: Fingerprint, *, commit: bool = True) -> None:
        """Record (or replace) the fingerprint of ``fingerprint.path``."""
        self._conn.execute(
            """
            INSERT INTO file_hashes (path, content_hash, size, mtime)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                content_hash = excluded.content_hash,
                size = excluded.size,
                mtime = excluded.mtime,
                indexed_at = datetime('now')
            """,
            (fingerprint.path, fingerprint.content_hash, fingerprint.size, fingerprint.mtime),
        )
        if commit:
            self._conn.commit()

    def remove(self, path: str, *, commit: bool = True) -> None:
        self._conn.execute("DELETE FROM file_hashes WHERE path = ?", (path,))
        if commit:
            self._conn.commit()

    def find_paths_by_hash(self, content_hash: str) -> list[str]:
        """All paths currently recorded with *content_hash*."""
        rows = self._conn.execute(
            "SELECT path FROM file_hashes WHERE content_hash = ? ORDER BY path", (content_hash,)
        ).fetchall()
        return [r["path"] for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM file_hashes").fetchone()[0]
