"""Domain models for the Cortex store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    ERROR = "error"


@dataclass
class FileRecord:
    path: str
    source_id: str
    lens: str
    status: FileStatus = FileStatus.PENDING
    error: str | None = None
    is_duplicate: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None  # set after insert


@dataclass
class Insight:
    id: str
    file_id: int
    title: str
    content: str
    category: str
    lens: str
    confidence: float
    tags: list[str] = field(default_factory=list)
    related_concepts: list[str] = field(default_factory=list)
    created_at: str | None = None

    @property
    def tags_json(self) -> str:
        return json.dumps(self.tags)

    @property
    def related_concepts_json(self) -> str:
        return json.dumps(self.related_concepts)

    @property
    def embedding_text(self) -> str:
        """Text that is embedded for similarity search."""
        return f"{self.title}\n{self.content}"


@dataclass(frozen=True)
class Fingerprint:
    path: str
    content_hash: str
    size: int
    mtime: float
