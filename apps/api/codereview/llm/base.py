"""Abstract base class for LLM adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from codereview.errors import LLMRequestError
from codereview.schemas import LLMMessage, LLMResponse


RETRYABLE_STATUS = frozenset({429})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS or 500 <= status_code < 600


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    Providers (Yandex GPT, OpenAI-compatible endpoints) implement this
    interface so the router can retry and fall back uniformly. Adapters raise
    ``LLMRequestError`` on failure and mark whether the failure is retryable.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'yandex', 'openai')."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """Send a completion request.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with the generated text
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def _post(self, client: httpx.AsyncClient, url: str, payload: dict) -> dict:
        """POST ``payload`` and return the decoded JSON body.

        Transport failures and non-2xx replies become ``LLMRequestError``.
        """
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise LLMRequestError(
                f"{self.provider_name} returned HTTP {status}: {e.response.text[:500]}",
                status_code=status,
                retryable=is_retryable_status(status),
            ) from e
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise LLMRequestError(
                f"{self.provider_name} request failed: {e!r}",
                retryable=True,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise LLMRequestError(f"{self.provider_name} request failed: {e!r}") from e
