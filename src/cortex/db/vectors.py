"""Embedding index — float32 blob storage and exhaustive cosine search.

Vectors are stored in ``vec_insights`` keyed by insight id, serialized with
``sqlite_vec.serialize_float32`` (little-endian float32). The table has no
foreign key to ``insights``: vector-only operations never touch relational
rows, and orphans are reconciled with ``vacuum()``.

Search is a full scan, O(n) per query. That is fine for a personal corpus of
thousands of insights; an approximate nearest-neighbour index would be the
next step if the corpus grows by orders of magnitude.
"""

from __future__ import annotations

import math
import sqlite3
import struct
from collections.abc import Iterable, Sequence

import sqlite_vec

from cortex.errors import DimensionMismatch

_DIMENSIONS_KEY = "dimensions"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of *a* and *b*, clamped to [-1, 1].

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatch: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, score))


def deserialize_float32(blob: bytes) -> list[float]:
    """Inverse of ``sqlite_vec.serialize_float32``."""
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class EmbeddingIndex:
    """Vector storage keyed by insight id, with a pinned dimensionality.

    Args:
        conn: Open connection with the schema migrated.
        dimensions: Vector length of the configured embedding model. The
            first open of a store records it; later opens with a different
            value raise ``DimensionMismatch``.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")
        self._conn = conn
        self.dimensions = dimensions
        self._pin_dimensions()

    def _pin_dimensions(self) -> None:
        row = self._conn.execute(
            "SELECT value FROM vec_meta WHERE key = ?", (_DIMENSIONS_KEY,)
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO vec_meta (key, value) VALUES (?, ?)",
                (_DIMENSIONS_KEY, str(self.dimensions)),
            )
            self._conn.commit()
            return
        stored = int(row["value"])
        if stored != self.dimensions:
            raise DimensionMismatch(stored, self.dimensions)

    def _check(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimensions:
            raise DimensionMismatch(self.dimensions, len(vector))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, insight_id: str, vector: Sequence[float], *, commit: bool = True) -> None:
        """Store (or replace) the vector for *insight_id*."""
        self._check(vector)
        self._conn.execute(
            "INSERT OR REPLACE INTO vec_insights (id, embedding) VALUES (?, ?)",
            (insight_id, sqlite_vec.serialize_float32(list(vector))),
        )
        if commit:
            self._conn.commit()

    def delete(self, insight_id: str, *, commit: bool = True) -> None:
        self._conn.execute("DELETE FROM vec_insights WHERE id = ?", (insight_id,))
        if commit:
            self._conn.commit()

    def delete_many(self, ids: Iterable[str], *, commit: bool = True) -> int:
        """Delete vectors for *ids*. Returns the number of rows removed."""
        ids = list(ids)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        cur = self._conn.execute(
            f"DELETE FROM vec_insights WHERE id IN ({placeholders})", ids
        )
        if commit:
            self._conn.commit()
        return cur.rowcount

    def vacuum(self, valid_ids: Iterable[str]) -> int:
        """Delete every vector whose id is not in *valid_ids*; reclaim space.

        Returns:
            Number of orphaned vectors removed.
        """
        valid = set(valid_ids)
        orphans = [i for i in self.ids() if i not in valid]
        removed = self.delete_many(orphans)
        if removed:
            self._conn.execute("VACUUM")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, insight_id: str) -> list[float] | None:
        row = self._conn.execute(
            "SELECT embedding FROM vec_insights WHERE id = ?", (insight_id,)
        ).fetchone()
        return deserialize_float32(row["embedding"]) if row else None

    def ids(self) -> list[str]:
        """Stored ids in insertion order."""
        return [r[0] for r in self._conn.execute("SELECT id FROM vec_insights ORDER BY rowid")]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM vec_insights").fetchone()[0]

    def search(self, query: Sequence[float], limit: int = 10) -> list[tuple[str, float]]:
        """Exhaustive cosine search. Returns ``[(id, score)]`` best first.

        Ties keep insertion order (the sort is stable).
        """
        self._check(query)
        if limit <= 0:
            return []

        scored: list[tuple[str, float]] = []
        for row in self._conn.execute("SELECT id, embedding FROM vec_insights ORDER BY rowid"):
            stored = deserialize_float32(row["embedding"])
            scored.append((row["id"], cosine_similarity(query, stored)))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]
