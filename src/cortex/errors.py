"""Cortex error taxonomy.

Per-file failures (``ExtractionFailed``, ``EmbeddingFailed``) are caught by the
daemon and recorded on the file record. ``DimensionMismatch`` signals a
misconfiguration between the embedding model and the stored index and is
never retried. ``IOUnavailable`` means the file vanished and the event is
dropped.
"""

from __future__ import annotations


class CortexError(Exception):
    """Base class for all Cortex errors."""


class IOUnavailable(CortexError):
    """The file disappeared or became unreadable between notification and read."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"File unavailable: {path}" + (f" ({reason})" if reason else ""))


class RateLimited(CortexError):
    """The model endpoint kept rate-limiting after every retry was used."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Rate limited after {attempts} attempts: {last_error}")


class ExtractionFailed(CortexError):
    """Insight extraction failed for a single file."""


class EmbeddingFailed(CortexError):
    """Embedding generation failed for a single insight."""


class DimensionMismatch(CortexError):
    """Vector length does not match the dimensionality of the embedding index."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: index stores {expected}-d vectors, got {actual}-d. "
            "Check llm.embedding_model / llm.embedding_dimensions against the existing store."
        )


class SanitizationError(CortexError):
    """Redaction could not produce text free of secret-pattern matches."""


class SecretsRedactedWarning(UserWarning):
    """Secrets were found and redacted before text left the machine."""
