"""LiteLLM client wrapper with rate-limit backoff and credential health check.

All completion and embedding calls route through this module. LiteLLM's own
retry is disabled (``num_retries=0``); tenacity applies the policy instead:

  - a rate-limited call (HTTP 429) is retried with exponential backoff,
    ``base_delay * 2**attempt`` seconds, at most ``max_retries`` times;
  - any other failure (auth, bad request, network) propagates at once.

Exhausting the retries raises ``RateLimited``.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from typing import TypeVar

import litellm
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cortex.errors import RateLimited

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

T = TypeVar("T")

DEFAULT_BASE_DELAY = 1.0


# ------------------------------------------------------------------
# Provider → env var mapping for the health check
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Provider prefix of a LiteLLM model string ('openai' when unprefixed)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def required_env_var(model: str, api_key_ref: str | None = None) -> str | None:
    """Env var that must hold the credential for *model*, or None if keyless."""
    provider = provider_of(model)
    if provider in _PROVIDER_ENV and _PROVIDER_ENV[provider] is None:
        return None
    if api_key_ref:
        return api_key_ref
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def is_rate_limited(exc: BaseException) -> bool:
    """True for errors that mean "slow down": LiteLLM's RateLimitError or any HTTP 429."""
    if isinstance(exc, litellm.RateLimitError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    return status == 429


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``call()``, retrying rate-limited failures with doubling delays.

    Args:
        call: Zero-argument coroutine factory (called once per attempt).
        max_retries: Retries allowed after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        sleep: Awaitable sleep, injectable for tests.

    Raises:
        RateLimited: If every attempt was rate limited.
        Exception: Any non-rate-limit failure, on first occurrence.
    """
    attempts = max_retries + 1

    def log_retry(state: RetryCallState) -> None:
        logger.warning(
            "Rate limited (attempt {}/{}), retrying in {:.1f}s",
            state.attempt_number,
            attempts,
            state.next_action.sleep if state.next_action else 0.0,
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception(is_rate_limited),
        wait=wait_exponential(multiplier=base_delay),
        stop=stop_after_attempt(attempts),
        sleep=sleep,
        before_sleep=log_retry,
    )
    try:
        return await retrying(call)
    except RetryError as err:
        last = err.last_attempt
        cause = last.exception()
        raise RateLimited(last.attempt_number, cause) from cause


class LLMClient:
    """Async completion and embedding client for one configured model pair.

    Args:
        model: LiteLLM chat model string (provider/model format).
        embedding_model: LiteLLM embedding model string.
        provider: Configured provider; *api_key_ref* applies to models of
            this provider only.
        api_key_ref: Name of the env var holding that provider's credential
            (optional; defaults to the provider's conventional variable).
        max_retries: Rate-limit retry ceiling.
        base_delay: First backoff delay in seconds.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        model: str,
        embedding_model: str,
        provider: str | None = None,
        api_key_ref: str | None = None,
        max_retries: int = 3,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.model = model
        self.embedding_model = embedding_model
        self.provider = (provider or provider_of(model)).lower()
        self.api_key_ref = api_key_ref
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    def _key_ref(self, model: str) -> str | None:
        return self.api_key_ref if provider_of(model) == self.provider else None

    def _api_key(self, model: str) -> str | None:
        # Only pass a key explicitly when the config names a custom variable;
        # otherwise LiteLLM reads the provider default itself.
        ref = self._key_ref(model)
        if ref and required_env_var(model, ref):
            return os.environ.get(ref)
        return None

    async def complete(
        self,
        messages: list[dict],
        temperature: float = 0.3,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> str:
        """Chat completion. Returns the content of the first choice ('' if empty)."""
        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "num_retries": 0,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if key := self._api_key(self.model):
            kwargs["api_key"] = key

        response = await with_backoff(
            lambda: litellm.acompletion(**kwargs),
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )
        return response.choices[0].message.content or ""

    async def embed(self, text: str) -> list[float]:
        """Embed *text*. Returns the embedding vector."""
        kwargs: dict = {
            "model": self.embedding_model,
            "input": [text],
            "num_retries": 0,
        }
        if key := self._api_key(self.embedding_model):
            kwargs["api_key"] = key

        response = await with_backoff(
            lambda: litellm.aembedding(**kwargs),
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )
        return list(response.data[0]["embedding"])

    def is_healthy(self) -> bool:
        """True if credentials for both models are present. Never raises."""
        for model in (self.model, self.embedding_model):
            env_var = required_env_var(model, self._key_ref(model))
            if env_var is not None and not os.environ.get(env_var):
                return False
        return True
