"""Repository for file records and insights.

Single interface for the relational half of the store. Vectors live in
``cortex.db.vectors`` and fingerprints in ``cortex.fingerprint``; all three
share one connection owned by ``cortex.db.store.Store``.

Write methods commit by default. Pass ``commit=False`` to group several
writes into one transaction and commit (or roll back) at the call site.
"""

from __future__ import annotations

import json
import sqlite3

from cortex.db.models import FileRecord, FileStatus, Insight

_FILE_COLUMNS = "id, path, source_id, lens, status, error, is_duplicate, created_at, updated_at"
_INSIGHT_COLUMNS = (
    "id, file_id, title, content, category, lens, confidence, tags, related_concepts, created_at"
)


class Repository:
    """Data access layer for FileRecord and Insight rows.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema migrated
                (see cortex.db.migrations.run_migrations).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # File records
    # ------------------------------------------------------------------

    def ensure_file(self, path: str, source_id: str, lens: str) -> FileRecord:
        """Return the record for *path*, creating it as ``pending`` if missing.

        An existing record is returned untouched.
        """
        existing = self.get_file(path)
        if existing is not None:
            return existing
        self._conn.execute(
            "INSERT INTO file_records (path, source_id, lens, status) VALUES (?, ?, ?, ?)",
            (path, source_id, lens, FileStatus.PENDING.value),
        )
        self._conn.commit()
        return self.get_file(path)  # type: ignore[return-value]

    def get_file(self, path: str) -> FileRecord | None:
        """Return the record for *path*, or None if untracked."""
        row = self._conn.execute(
            f"SELECT {_FILE_COLUMNS} FROM file_records WHERE path = ?", (path,)
        ).fetchone()
        return _row_to_file(row) if row else None

    def get_file_by_id(self, file_id: int) -> FileRecord | None:
        row = self._conn.execute(
            f"SELECT {_FILE_COLUMNS} FROM file_records WHERE id = ?", (file_id,)
        ).fetchone()
        return _row_to_file(row) if row else None

    def list_files(
        self, status: FileStatus | None = None, source_id: str | None = None
    ) -> list[FileRecord]:
        """Return records, optionally filtered by status and/or source, oldest first."""
        sql = f"SELECT {_FILE_COLUMNS} FROM file_records"
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(FileStatus(status).value)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"
        return [_row_to_file(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_files(self, status: FileStatus | None = None) -> int:
        if status is None:
            return self._conn.execute("SELECT COUNT(*) FROM file_records").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM file_records WHERE status = ?", (FileStatus(status).value,)
        ).fetchone()[0]

    def mark_processing(
        self, file_id: int, source_id: str, lens: str, is_duplicate: bool
    ) -> None:
        """Move a record into ``processing`` and refresh its source metadata."""
        self._conn.execute(
            """
            UPDATE file_records
            SET status = ?, error = NULL, source_id = ?, lens = ?, is_duplicate = ?,
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (FileStatus.PROCESSING.value, source_id, lens, int(is_duplicate), file_id),
        )
        self._conn.commit()

    def set_status(
        self,
        file_id: int,
        status: FileStatus,
        error: str | None = None,
        *,
        commit: bool = True,
    ) -> None:
        """Set the lifecycle status (and error message) of a record."""
        self._conn.execute(
            "UPDATE file_records SET status = ?, error = ?, updated_at = datetime('now') WHERE id = ?",
            (FileStatus(status).value, error, file_id),
        )
        if commit:
            self._conn.commit()

    def set_duplicate(self, file_id: int, is_duplicate: bool, *, commit: bool = True) -> None:
        self._conn.execute(
            "UPDATE file_records SET is_duplicate = ? WHERE id = ?", (int(is_duplicate), file_id)
        )
        if commit:
            self._conn.commit()

    def reset_processing(self) -> int:
        """Return records stranded in ``processing`` to ``pending``. Returns the count."""
        cur = self._conn.execute(
            "UPDATE file_records SET status = ?, updated_at = datetime('now') WHERE status = ?",
            (FileStatus.PENDING.value, FileStatus.PROCESSING.value),
        )
        self._conn.commit()
        return cur.rowcount

    def mark_pending(self, source_id: str | None = None) -> list[str]:
        """Mark records (optionally of one source) ``pending``. Returns their paths."""
        files = self.list_files(source_id=source_id)
        for record in files:
            self.set_status(record.id, FileStatus.PENDING, commit=False)  # type: ignore[arg-type]
        self._conn.commit()
        return [f.path for f in files]

    def delete_file(self, file_id: int, *, commit: bool = True) -> None:
        """Delete a record; its insight rows go with it (ON DELETE CASCADE)."""
        self._conn.execute("DELETE FROM file_records WHERE id = ?", (file_id,))
        if commit:
            self._conn.commit()

    def list_errors(self) -> list[FileRecord]:
        return self.list_files(status=FileStatus.ERROR)

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def add_insight(self, insight: Insight, *, commit: bool = True) -> None:
        self._conn.execute(
            """
            INSERT INTO insights
                (id, file_id, title, content, category, lens, confidence, tags, related_concepts)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                insight.id,
                insight.file_id,
                insight.title,
                insight.content,
                insight.category,
                insight.lens,
                insight.confidence,
                insight.tags_json,
                insight.related_concepts_json,
            ),
        )
        if commit:
            self._conn.commit()

    def get_insight(self, insight_id: str) -> Insight | None:
        row = self._conn.execute(
            f"SELECT {_INSIGHT_COLUMNS} FROM insights WHERE id = ?", (insight_id,)
        ).fetchone()
        return _row_to_insight(row) if row else None

    def get_insights(self, ids: list[str]) -> dict[str, Insight]:
        """Return ``{id: Insight}`` for the ids that still exist."""
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        rows = self._conn.execute(
            f"SELECT {_INSIGHT_COLUMNS} FROM insights WHERE id IN ({placeholders})", ids
        ).fetchall()
        return {r["id"]: _row_to_insight(r) for r in rows}

    def list_insights_by_file(self, file_id: int) -> list[Insight]:
        rows = self._conn.execute(
            f"SELECT {_INSIGHT_COLUMNS} FROM insights WHERE file_id = ? ORDER BY rowid",
            (file_id,),
        ).fetchall()
        return [_row_to_insight(r) for r in rows]

    def list_insights(
        self,
        lens: str | None = None,
        category: str | None = None,
        limit: int = 30,
        offset: int = 0,
    ) -> list[Insight]:
        """Return insights newest first, filtered by lens and/or category."""
        sql = f"SELECT {_INSIGHT_COLUMNS} FROM insights"
        clauses: list[str] = []
        params: list[object] = []
        if lens is not None:
            clauses.append("lens = ?")
            params.append(lens)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [_row_to_insight(r) for r in self._conn.execute(sql, params).fetchall()]

    def insight_ids(self) -> set[str]:
        return {r[0] for r in self._conn.execute("SELECT id FROM insights").fetchall()}

    def count_insights(self, file_id: int | None = None) -> int:
        if file_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM insights").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM insights WHERE file_id = ?", (file_id,)
        ).fetchone()[0]

    def delete_insights_by_file(self, file_id: int, *, commit: bool = True) -> list[str]:
        """Delete the insight rows of a record. Returns the deleted ids."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM insights WHERE file_id = ?", (file_id,)
            ).fetchall()
        ]
        self._conn.execute("DELETE FROM insights WHERE file_id = ?", (file_id,))
        if commit:
            self._conn.commit()
        return ids


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        id=row["id"],
        path=row["path"],
        source_id=row["source_id"],
        lens=row["lens"],
        status=FileStatus(row["status"]),
        error=row["error"],
        is_duplicate=bool(row["is_duplicate"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_insight(row: sqlite3.Row) -> Insight:
    return Insight(
        id=row["id"],
        file_id=row["file_id"],
        title=row["title"],
        content=row["content"],
        category=row["category"],
        lens=row["lens"],
        confidence=row["confidence"],
        tags=json.loads(row["tags"]),
        related_concepts=json.loads(row["related_concepts"]),
        created_at=row["created_at"],
    )
