"""Yandex GPT adapter.

Foundation Models completion endpoint:
POST https://llm.api.cloud.yandex.net/foundationModels/v1/completion
with ``Authorization: Api-Key <key>`` and a ``modelUri`` of the form
``gpt://<folder_id>/<model>``. The reply text lives at
``result.alternatives[0].message.text``.
"""

from __future__ import annotations

import httpx

from codereview.config import Settings
from codereview.errors import ConfigError, LLMRequestError
from codereview.llm.base import LLMAdapter
from codereview.schemas import LLMMessage, LLMResponse


COMPLETION_PATH = "/foundationModels/v1/completion"


class YandexGPTAdapter(LLMAdapter):
    """Yandex Foundation Models completion adapter."""

    def __init__(
        self,
        api_key: str,
        folder_id: str,
        model: str = "yandexgpt",
        base_url: str = "https://llm.api.cloud.yandex.net",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key or not folder_id:
            raise ConfigError("Yandex GPT API key or folder id not configured")

        self.model_uri = f"gpt://{folder_id}/{model}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Api-Key {api_key}",
                "Content-Type": "application/json",
                "x-folder-id": folder_id,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> YandexGPTAdapter:
        return cls(
            api_key=settings.yandex_api_key,
            folder_id=settings.yandex_folder_id,
            model=settings.yandex_model,
            base_url=settings.yandex_base_url,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "yandex"

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        payload = {
            "modelUri": self.model_uri,
            "completionOptions": {
                "stream": False,
                "temperature": temperature,
                "maxTokens": str(max_tokens),
            },
            "messages": [{"role": m.role, "text": m.content} for m in messages],
        }
        data = await self._post(self._client, COMPLETION_PATH, payload)

        try:
            result = data["result"]
            alternative = result["alternatives"][0]
            text = alternative["message"]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMRequestError(f"Unexpected Yandex GPT response shape: {e!r}") from e

        return LLMResponse(
            content=text,
            model=result.get("modelVersion") or self.model_uri,
            usage=result.get("usage") or {},
            finish_reason=alternative.get("status"),
            raw_response=data,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
