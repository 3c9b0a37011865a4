"""Shared pytest fixtures."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

# Use litellm's bundled model cost map instead of fetching it over the network at import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from cortex.analyzer import InsightExtractor
from cortex.config import CortexConfig, QueueCfg, WatchSource
from cortex.db.connection import Database
from cortex.db.migrations import run_migrations
from cortex.db.store import Store

# Keyword vocabulary of the fake embedding model: one dimension per word.
VOCAB: tuple[str, ...] = ("roadmap", "meeting", "grocery", "milk")
DIMS = len(VOCAB)


def keyword_vector(text: str) -> list[float]:
    """Deterministic stand-in embedding: vocabulary word counts."""
    words = text.lower().replace("\n", " ").split()
    return [float(sum(1 for w in words if w.strip(".,:;!?") == v)) for v in VOCAB]


def insights_reply(*items: dict) -> str:
    return json.dumps({"insights": list(items)})


def insight_item(
    title: str = "Q1 roadmap",
    content: str = "The meeting discusses the Q1 roadmap.",
    category: str = "knowledge",
    confidence: float = 0.8,
    **extra,
) -> dict:
    return {
        "title": title,
        "content": content,
        "category": category,
        "confidence": confidence,
        "tags": ["planning"],
        "relatedConcepts": ["roadmap"],
        **extra,
    }


class FakeLLMClient:
    """Scripted stand-in for LLMClient.

    Each ``complete`` call consumes the next scripted reply (the last one
    repeats). A reply that is an exception instance is raised instead.
    """

    def __init__(self, replies: list | None = None, embed=keyword_vector) -> None:
        self.replies = list(replies or [insights_reply(insight_item())])
        self.complete_calls: list[list[dict]] = []
        self.embed_calls: list[str] = []
        self.healthy = True
        self._embed = embed

    async def complete(self, messages, temperature=0.3, max_tokens=2048, json_mode=False):
        self.complete_calls.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def embed(self, text):
        self.embed_calls.append(text)
        return self._embed(text)

    def is_healthy(self) -> bool:
        return self.healthy

    @property
    def sent_text(self) -> str:
        """Everything sent to the model so far, concatenated."""
        parts = [m["content"] for call in self.complete_calls for m in call]
        return "\n".join(parts + self.embed_calls)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with migrations applied, closed after test."""
    db = Database(tmp_path / "cortex.db")
    conn = db.connect()
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_path):
    """Store with the fake model's dimensionality, closed after test."""
    s = Store.open(tmp_path / "data" / "cortex.db", DIMS)
    yield s
    s.close()


@pytest.fixture
def fake_client():
    return FakeLLMClient()


@pytest.fixture
def extractor(fake_client):
    return InsightExtractor(fake_client, DIMS)


@pytest.fixture
def notes_dir(tmp_path) -> Path:
    d = tmp_path / "notes"
    d.mkdir()
    return d


@pytest.fixture
def source(notes_dir) -> WatchSource:
    return WatchSource(id="notes", path=notes_dir, lens="general", extensions=(".md", ".txt"))


@pytest.fixture
def config(tmp_path, source) -> CortexConfig:
    return CortexConfig(
        data_dir=tmp_path / "data",
        watch_sources=[source],
        queue=QueueCfg(concurrency=2, max_retries=3),
        debounce=0.05,
    )
