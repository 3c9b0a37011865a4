"""Cortex database layer."""

from cortex.db.connection import Database
from cortex.db.migrations import MIGRATIONS, run_migrations
from cortex.db.models import FileRecord, FileStatus, Fingerprint, Insight
from cortex.db.repository import Repository
from cortex.db.vectors import EmbeddingIndex, cosine_similarity

__all__ = [
    "Database",
    "run_migrations",
    "MIGRATIONS",
    "FileRecord",
    "FileStatus",
    "Fingerprint",
    "Insight",
    "Repository",
    "EmbeddingIndex",
    "cosine_similarity",
]
