"""Insight extraction — lens prompts, model call, schema validation, embeddings.

For each file:
1. Sanitize the text (secrets always, PII per config) before it leaves the machine.
2. Keep the first ``MAX_CONTENT_CHARS`` characters; the rest is dropped.
3. Ask the model for 1–3 insights as JSON, using the lens' system prompt.
4. Validate each returned item; items that do not fit the schema are
   rejected individually (``Rejected``) and logged, never fatal.

Embeddings are generated per insight from ``title + content``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Literal, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cortex.config import PrivacyCfg
from cortex.errors import DimensionMismatch, EmbeddingFailed, ExtractionFailed
from cortex.llm_client import LLMClient
from cortex.privacy import redact_secrets, report_secrets, sanitize

CATEGORIES: tuple[str, ...] = ("knowledge", "pattern", "observation", "idea", "reference")
MAX_CONTENT_CHARS = 4000
MAX_INSIGHTS = 3
DEFAULT_LENS = "general"

LENS_PROMPTS: dict[str, str] = {
    "philosopher": (
        "You are a philosophical analyst. Extract deep insights about meaning, purpose, "
        "values, and existential themes from this content. Focus on wisdom, life lessons, "
        "and philosophical observations."
    ),
    "architect": (
        "You are a technical architect. Extract insights about system design, code patterns, "
        "architectural decisions, and technical concepts. Focus on structure, patterns, and "
        "technical knowledge."
    ),
    "somatic": (
        "You are a somatic awareness analyst. Extract insights about physical experiences, "
        "health patterns, body awareness, and wellness observations. Focus on physical "
        "sensations and health-related knowledge."
    ),
    "analyst": (
        "You are a data analyst. Extract insights about patterns, trends, metrics, and "
        "analytical observations. Focus on quantifiable insights and data-driven observations."
    ),
    DEFAULT_LENS: (
        "You are a general knowledge analyst. Extract the most important insights, facts, and "
        "observations from this content. Focus on actionable knowledge and key takeaways."
    ),
}

_EXTRACTION_PROMPT = """\
Analyze the following content and extract 1-3 key insights.

For each insight, provide:
- title: A concise title (max 100 chars)
- content: The full insight text (max 500 chars)
- category: One of: {categories}
- confidence: How confident you are in this insight (0.0 to 1.0)
- tags: 2-5 relevant tags
- relatedConcepts: 1-3 related concepts this connects to

Return a JSON object of the form {{"insights": [...]}}.

Content to analyze:
---
{content}
---

Return ONLY valid JSON, no other text."""

_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


# ------------------------------------------------------------------
# Schema
# ------------------------------------------------------------------


class InsightDraft(BaseModel):
    """One model-proposed insight that passed schema validation."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    category: Literal["knowledge", "pattern", "observation", "idea", "reference"]
    confidence: float = Field(ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)
    related_concepts: list[str] = Field(default_factory=list, alias="relatedConcepts")

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


@dataclass(frozen=True)
class Validated:
    insight: InsightDraft


@dataclass(frozen=True)
class Rejected:
    reason: str
    raw: Any


ValidationResult = Union[Validated, Rejected]


def validate_item(raw: Any) -> ValidationResult:
    """Validate one model-returned item against the insight schema."""
    if not isinstance(raw, dict):
        return Rejected(reason=f"expected an object, got {type(raw).__name__}", raw=raw)
    try:
        return Validated(InsightDraft.model_validate(raw))
    except ValidationError as exc:
        reason = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<item>'}: {err['msg']}"
            for err in exc.errors()
        )
        return Rejected(reason=reason, raw=raw)


def parse_response(text: str) -> list[ValidationResult]:
    """Parse the model's JSON reply into per-item validation results.

    Accepts ``{"insights": [...]}``, a bare list, or a single object.

    Raises:
        ExtractionFailed: If the reply is not JSON at all.
    """
    fenced = _CODE_FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExtractionFailed(f"model returned unparseable output: {exc}") from exc

    if isinstance(parsed, dict) and isinstance(parsed.get("insights"), list):
        items = parsed["insights"]
    elif isinstance(parsed, list):
        items = parsed
    else:
        items = [parsed]
    return [validate_item(item) for item in items]


def system_prompt(lens: str) -> str:
    """System prompt for *lens*; unknown lenses fall back to the general one."""
    return LENS_PROMPTS.get(lens, LENS_PROMPTS[DEFAULT_LENS])


# ------------------------------------------------------------------
# Extractor
# ------------------------------------------------------------------


class InsightExtractor:
    """Derive insights and embeddings from file text via the external model.

    Args:
        client: Model client (owns the rate-limit retry policy).
        dimensions: Expected embedding length; must match the EmbeddingIndex.
        privacy: Redaction settings applied before every model call.
    """

    def __init__(
        self,
        client: LLMClient,
        dimensions: int,
        privacy: PrivacyCfg | None = None,
    ) -> None:
        self._client = client
        self.dimensions = dimensions
        self._privacy = privacy or PrivacyCfg()

    def is_healthy(self) -> bool:
        return self._client.is_healthy()

    async def analyze(self, content: str, lens: str, origin: str = "<text>") -> list[InsightDraft]:
        """Extract up to three validated insights from *content*.

        Args:
            content: Raw file text (sanitized here, before the model call).
            lens: Analysis lens; unknown values use the general lens.
            origin: Label for log and warning messages (usually the path).

        Raises:
            ExtractionFailed: On rate-limit exhaustion, any other model failure,
                or a reply that is not JSON.
        """
        if not content.strip():
            return []

        result = sanitize(
            content,
            redact_secrets_enabled=self._privacy.redact_secrets,
            pii=self._privacy.pii if self._privacy.redact_pii else None,
        )
        report_secrets(result.findings, origin)

        prompt = _EXTRACTION_PROMPT.format(
            categories=", ".join(CATEGORIES),
            content=result.text[:MAX_CONTENT_CHARS],
        )
        messages = [
            {"role": "system", "content": system_prompt(lens)},
            {"role": "user", "content": prompt},
        ]
        try:
            reply = await self._client.complete(messages, temperature=0.3, json_mode=True)
        except Exception as exc:
            raise ExtractionFailed(f"insight extraction failed: {exc}") from exc

        insights: list[InsightDraft] = []
        for item in parse_response(reply):
            if isinstance(item, Rejected):
                logger.warning("Dropped insight from {}: {}", origin, item.reason)
                continue
            insights.append(item.insight)
        if len(insights) > MAX_INSIGHTS:
            logger.debug("Model returned {} insights for {}, keeping {}", len(insights), origin, MAX_INSIGHTS)
        return insights[:MAX_INSIGHTS]

    async def embed(self, text: str) -> list[float]:
        """Embed *text* (secrets redacted first).

        Raises:
            EmbeddingFailed: On rate-limit exhaustion or any other model failure.
            DimensionMismatch: If the vector length differs from ``dimensions``.
        """
        if self._privacy.redact_secrets:
            text = redact_secrets(text)
        try:
            vector = await self._client.embed(text)
        except Exception as exc:
            raise EmbeddingFailed(f"embedding failed: {exc}") from exc
        if len(vector) != self.dimensions:
            raise DimensionMismatch(self.dimensions, len(vector))
        return vector
