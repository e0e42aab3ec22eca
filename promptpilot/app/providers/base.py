"""LLM provider abstraction so the orchestrator never depends on a vendor API shape."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import LLMProviderError, OVERLOAD_STATUS, RATE_LIMIT_STATUS


@dataclass
class LLMRequest:
    """Unified single-turn request for all providers."""
    prompt: str
    model: str
    temperature: float = 0.4
    max_tokens: Optional[int] = None
    extra_params: Optional[Dict[str, Any]] = None


@dataclass
class LLMResponse:
    """Unified response format from LLM providers."""
    text: str
    usage: Optional[Dict[str, int]] = None
    raw: Optional[Dict[str, Any]] = None
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "provider"

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """
        Execute one completion request.

        Args:
            request: Unified LLM request

        Returns:
            LLMResponse with text and metadata

        Raises:
            LLMProviderError: On transport or provider failures, with
                ``status_code`` set when the provider answered with an HTTP error.
        """
        raise NotImplementedError


def http_status_error(provider: str, status_code: int, body: str = "", original_error: Optional[BaseException] = None) -> LLMProviderError:
    """Build a provider error for a non-2xx response."""
    if status_code == RATE_LIMIT_STATUS:
        message = "Rate limit exceeded (429). Please wait before making more requests."
    elif status_code == OVERLOAD_STATUS:
        message = "Service temporarily overloaded (503)."
    else:
        snippet = (body or "").strip()[:200]
        message = f"API error: {status_code}" + (f" - {snippet}" if snippet else "")
    return LLMProviderError(message, provider=provider, status_code=status_code, original_error=original_error)


__all__ = ["LLMProvider", "LLMRequest", "LLMResponse", "http_status_error"]
