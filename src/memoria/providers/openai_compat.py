"""Chat completions adapter for OpenAI-compatible servers (SGLang, vLLM, llama.cpp, OpenAI)."""

from typing import Any

import httpx

from memoria.config import get_settings
from memoria.errors import ProviderError
from memoria.providers.base import ModelResponse


class OpenAICompatProvider:
    def __init__(
        self,
        model: str | None = None,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.llm_model
        self._base_url = (base_url or settings.llm_base_url).rstrip("/")
        self._api_key = settings.llm_api_key if api_key is None else api_key
        self._transport = transport

    @staticmethod
    def _coerce_text(value: object) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            chunks: list[str] = []
            for item in value:
                if isinstance(item, str):
                    chunks.append(item)
                elif isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        chunks.append(text)
            return "".join(chunks)
        return ""

    @staticmethod
    def _parse_response(payload: dict[str, Any]) -> ModelResponse:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError("completion response missing choices", retryable=False)
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise ProviderError("completion response message missing", retryable=False)
        usage = payload.get("usage")
        return ModelResponse(
            text=OpenAICompatProvider._coerce_text(message.get("content")),
            usage=usage if isinstance(usage, dict) else {},
        )

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    async def generate(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.2,
        max_tokens: int = 2048,
        json_mode: bool = False,
    ) -> ModelResponse:
        settings = get_settings()
        body: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        timeout_seconds = max(10, int(settings.llm_timeout_seconds))
        try:
            async with httpx.AsyncClient(
                timeout=timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions", json=body, headers=self._headers()
                )
                response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderError(
                f"completion request failed with HTTP {status}",
                retryable=status == 429 or status >= 500,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"completion request failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProviderError("completion response is not an object", retryable=False)
        return self._parse_response(payload)

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/models", headers=self._headers())
            return response.status_code < 400
        except httpx.HTTPError:
            return False
