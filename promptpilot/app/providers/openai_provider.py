"""OpenAI chat-completions provider; also serves Groq and other compatible endpoints."""

from __future__ import annotations

import json
from typing import Optional

import httpx

from .base import LLMProvider, LLMRequest, LLMResponse, http_status_error
from .errors import LLMProviderError


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible chat completions provider."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1/chat/completions",
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        name: str = "openai",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.name = name
        self._transport = transport

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Execute one chat completion with the prompt as the single user message."""
        payload = {
            "model": request.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "temperature": request.temperature,
        }

        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens

        if request.extra_params:
            payload.update(request.extra_params)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        timeout = httpx.Timeout(
            self.timeout_seconds,
            connect=self.connect_timeout_seconds,
        )

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    self.base_url,
                    headers=headers,
                    json=payload,
                    timeout=timeout,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise http_status_error(self.name, exc.response.status_code, exc.response.text, exc) from exc
        except httpx.TimeoutException as exc:
            raise LLMProviderError(
                f"{self.name} request timeout",
                provider=self.name,
                original_error=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMProviderError(
                f"{self.name} HTTP error: {exc}",
                provider=self.name,
                original_error=exc,
            ) from exc
        except json.JSONDecodeError as exc:
            raise LLMProviderError(
                f"{self.name} returned invalid JSON",
                provider=self.name,
                original_error=exc,
            ) from exc

        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError(
                f"{self.name} response missing expected fields: {exc}",
                provider=self.name,
                original_error=exc,
            ) from exc

        if not text:
            raise LLMProviderError("No response from AI", provider=self.name)

        return LLMResponse(
            text=text,
            usage=data.get("usage"),
            raw=data,
            finish_reason=choice.get("finish_reason"),
        )


__all__ = ["OpenAIProvider"]
