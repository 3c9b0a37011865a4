"""Store handle: one connection shared by records, fingerprints and vectors.

Constructed once (daemon start, or per CLI command) and passed by reference
to every component that needs persistence. There is no module-level
singleton.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path

from cortex.db.connection import Database
from cortex.db.migrations import run_migrations
from cortex.db.models import FileStatus, Fingerprint, Insight
from cortex.db.repository import Repository
from cortex.db.vectors import EmbeddingIndex
from cortex.fingerprint import FingerprintStore


class Store:
    """Open persistence handle for one data directory.

    Attributes:
        conn: The underlying sqlite3 connection.
        records: FileRecord / Insight repository.
        fingerprints: Fingerprint rows for change and duplicate detection.
        vectors: Embedding index keyed by insight id.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        self.conn = conn
        self.records = Repository(conn)
        self.fingerprints = FingerprintStore(conn)
        self.vectors = EmbeddingIndex(conn, dimensions)

    @classmethod
    def open(cls, db_path: Path | str, dimensions: int) -> Store:
        """Open (or create) the database at *db_path* and run migrations."""
        conn = Database(db_path).connect()
        try:
            run_migrations(conn)
            return cls(conn, dimensions)
        except BaseException:
            conn.close()
            raise

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Multi-table writes
    # ------------------------------------------------------------------

    def commit_indexed(
        self,
        file_id: int,
        insights: Sequence[Insight],
        vectors: Sequence[Sequence[float]],
        fingerprint: Fingerprint,
    ) -> None:
        """Replace a record's insights and vectors, mark it indexed, save its fingerprint.

        The duplicate flag is settled against the fingerprints already committed.

        Runs as one transaction: on any failure nothing is written and the
        previous insight set stays in place.
        """
        if len(insights) != len(vectors):
            raise ValueError("one vector per insight is required")
        try:
            old_ids = self.records.delete_insights_by_file(file_id, commit=False)
            self.vectors.delete_many(old_ids, commit=False)
            for insight, vector in zip(insights, vectors):
                self.records.add_insight(insight, commit=False)
                self.vectors.put(insight.id, vector, commit=False)
            self.records.set_status(file_id, FileStatus.INDEXED, commit=False)
            # Rechecked here: a concurrent task may have committed the same content.
            duplicate = self.fingerprints.is_duplicate(fingerprint.content_hash, exclude_path=fingerprint.path)
            self.records.set_duplicate(file_id, duplicate, commit=False)
            self.fingerprints.save(fingerprint, commit=False)
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise

    def purge_file(self, path: str) -> bool:
        """Remove a record, its insights and vectors, and its fingerprint.

        Vectors go first, then the record (cascading to insight rows), then
        the fingerprint. Returns False if *path* was not tracked.
        """
        record = self.records.get_file(path)
        try:
            if record is not None:
                ids = [i.id for i in self.records.list_insights_by_file(record.id)]  # type: ignore[arg-type]
                self.vectors.delete_many(ids, commit=False)
                self.records.delete_file(record.id, commit=False)  # type: ignore[arg-type]
            self.fingerprints.remove(path, commit=False)
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise
        return record is not None

    def vacuum(self) -> int:
        """Drop vectors whose insight no longer exists. Returns the count removed."""
        return self.vectors.vacuum(self.records.insight_ids())
