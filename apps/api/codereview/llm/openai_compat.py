"""Adapter for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import httpx

from codereview.config import Settings
from codereview.errors import ConfigError, LLMRequestError
from codereview.llm.base import LLMAdapter
from codereview.schemas import LLMMessage, LLMResponse


class OpenAICompatibleAdapter(LLMAdapter):
    """Any provider exposing ``POST /chat/completions``."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigError("OpenAI-compatible API key not configured")

        self.model = model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OpenAICompatibleAdapter:
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        payload = {
            "model": self.model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        data = await self._post(self._client, "/chat/completions", payload)

        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMRequestError(f"Unexpected chat completion response shape: {e!r}") from e

        return LLMResponse(
            content=content or "",
            model=data.get("model", self.model),
            usage=data.get("usage") or {},
            finish_reason=choice.get("finish_reason"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
