"""Read-side operations: similarity search, status, insight listing.

Every function takes the open Store explicitly. Reads may run while the
daemon is writing (WAL); a record observed mid-transition is acceptable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cortex.analyzer import InsightExtractor
from cortex.config import CortexConfig
from cortex.db.models import FileStatus, Insight
from cortex.db.store import Store

SNIPPET_CHARS = 200


@dataclass(frozen=True)
class SearchHit:
    id: str
    title: str
    snippet: str
    category: str
    confidence: float
    source: str
    score: float


def snippet(text: str, limit: int = SNIPPET_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


async def search(
    store: Store, extractor: InsightExtractor, query: str, limit: int = 10
) -> list[SearchHit]:
    """Return the insights most similar to *query*, best first.

    An empty index or a blank query returns ``[]`` without calling the model.

    Raises:
        EmbeddingFailed: If the query cannot be embedded.
        DimensionMismatch: If the embedding model disagrees with the index.
    """
    if not query.strip() or limit <= 0 or store.vectors.count() == 0:
        return []

    vector = await extractor.embed(query)
    ranked = store.vectors.search(vector, limit)
    insights = store.records.get_insights([insight_id for insight_id, _ in ranked])

    hits: list[SearchHit] = []
    paths: dict[int, str] = {}
    for insight_id, score in ranked:
        insight = insights.get(insight_id)
        if insight is None:
            # Orphaned vector; vacuum() removes it.
            continue
        if insight.file_id not in paths:
            record = store.records.get_file_by_id(insight.file_id)
            paths[insight.file_id] = record.path if record else ""
        hits.append(
            SearchHit(
                id=insight.id,
                title=insight.title,
                snippet=snippet(insight.content),
                category=insight.category,
                confidence=insight.confidence,
                source=paths[insight.file_id],
                score=score,
            )
        )
    return hits


def status(
    store: Store, config: CortexConfig, extractor: InsightExtractor | None = None
) -> dict[str, Any]:
    """Index counts, per-file errors and model health."""
    errors = store.records.list_errors()
    return {
        "files_indexed": store.records.count_files(FileStatus.INDEXED),
        "insights": store.records.count_insights(),
        "pending": store.records.count_files(FileStatus.PENDING),
        "processing": store.records.count_files(FileStatus.PROCESSING),
        "errors": [{"path": r.path, "error": r.error or ""} for r in errors],
        "error_count": len(errors),
        "sources": [
            {"id": s.id, "path": str(s.path), "lens": s.lens} for s in config.watch_sources
        ],
        "llm_healthy": extractor.is_healthy() if extractor is not None else False,
    }


def list_insights(
    store: Store,
    lens: str | None = None,
    category: str | None = None,
    limit: int = 30,
    offset: int = 0,
) -> list[Insight]:
    return store.records.list_insights(lens=lens, category=category, limit=limit, offset=offset)


def get_insight(store: Store, insight_id: str) -> Insight | None:
    return store.records.get_insight(insight_id)
