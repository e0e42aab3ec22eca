"""Google Gemini ``generateContent`` provider."""

from __future__ import annotations

import json
from typing import Optional

import httpx

from .base import LLMProvider, LLMRequest, LLMResponse, http_status_error
from .errors import LLMProviderError


class GeminiProvider(LLMProvider):
    """Gemini REST provider. The API key travels in the ``x-goog-api-key`` header."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.name = "gemini"
        self._transport = transport

    async def complete(self, request: LLMRequest) -> LLMResponse:
        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": request.prompt}]},
            ],
            "generationConfig": {"temperature": request.temperature},
        }
        if request.max_tokens:
            payload["generationConfig"]["maxOutputTokens"] = request.max_tokens
        if request.extra_params:
            payload.update(request.extra_params)

        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        timeout = httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds)

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(self.base_url, headers=headers, json=payload, timeout=timeout)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise http_status_error(self.name, exc.response.status_code, exc.response.text, exc) from exc
        except httpx.TimeoutException as exc:
            raise LLMProviderError("gemini request timeout", provider=self.name, original_error=exc) from exc
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"gemini HTTP error: {exc}", provider=self.name, original_error=exc) from exc
        except json.JSONDecodeError as exc:
            raise LLMProviderError("gemini returned invalid JSON", provider=self.name, original_error=exc) from exc

        try:
            candidate = data["candidates"][0]
            text = candidate["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None

        if not text:
            raise LLMProviderError("No response from AI", provider=self.name)

        return LLMResponse(
            text=text,
            usage=data.get("usageMetadata"),
            raw=data,
            finish_reason=candidate.get("finishReason"),
        )


__all__ = ["GeminiProvider"]
