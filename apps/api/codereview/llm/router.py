"""LLM router with retries and provider fallback.

Strategy:
- Every call goes to the primary provider
- Retryable failures (timeouts, connection errors, HTTP 429, HTTP 5xx) are
  retried with capped exponential backoff, up to ``max_retries`` extra attempts
- Anything else, or exhausted retries, falls through to the fallback provider
  when one is configured
"""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from codereview.config import Settings
from codereview.errors import LLMError, LLMRequestError
from codereview.llm.base import LLMAdapter
from codereview.llm.openai_compat import OpenAICompatibleAdapter
from codereview.llm.yandex import YandexGPTAdapter
from codereview.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, LLMRequestError) and exc.retryable


def create_adapter(
    provider: str,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMAdapter:
    """Build the adapter for a provider name."""
    if provider == "yandex":
        return YandexGPTAdapter.from_settings(settings, transport=transport)
    if provider == "openai":
        return OpenAICompatibleAdapter.from_settings(settings, transport=transport)
    raise ValueError(f"Unknown provider: {provider}")


class ModelRouter:
    """Routes completion requests to a provider with retry and fallback."""

    def __init__(
        self,
        primary: LLMAdapter,
        fallback: LLMAdapter | None = None,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        backoff_multiplier: float = 2.0,
        backoff_max: float = 30.0,
    ):
        self.primary = primary
        self.fallback = fallback
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_multiplier = backoff_multiplier
        self.backoff_max = backoff_max

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ModelRouter:
        primary = create_adapter(settings.llm_provider, settings, transport)
        fallback = None
        if settings.llm_fallback_provider and settings.llm_fallback_provider != settings.llm_provider:
            fallback = create_adapter(settings.llm_fallback_provider, settings, transport)
        return cls(
            primary=primary,
            fallback=fallback,
            max_retries=settings.llm_max_retries,
            backoff_base=settings.llm_backoff_base_seconds,
            backoff_multiplier=settings.llm_backoff_multiplier,
            backoff_max=settings.llm_backoff_max_seconds,
        )

    async def _complete_with_retries(
        self,
        adapter: LLMAdapter,
        messages: list[LLMMessage],
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.backoff_base,
                exp_base=self.backoff_multiplier,
                max=self.backoff_max,
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda state: logger.warning(
                f"{adapter.provider_name} attempt {state.attempt_number} failed: "
                f"{state.outcome.exception()}; retrying"
            ),
        )
        async for attempt in retrying:
            with attempt:
                return await adapter.complete(
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
        raise LLMError(f"{adapter.provider_name} produced no response")

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Complete with the primary provider, falling back on failure.

        Raises:
            LLMError: if every provider failed
        """
        logger.info(f"Routing completion to {self.primary.provider_name}")
        try:
            return await self._complete_with_retries(
                self.primary, messages, temperature, max_tokens
            )
        except LLMError as e:
            if self.fallback is None:
                raise
            logger.warning(
                f"Primary provider {self.primary.provider_name} failed ({e}), "
                f"falling back to {self.fallback.provider_name}"
            )
        return await self._complete_with_retries(self.fallback, messages, temperature, max_tokens)

    async def close(self) -> None:
        """Close all adapters."""
        await self.primary.close()
        if self.fallback is not None:
            await self.fallback.close()
