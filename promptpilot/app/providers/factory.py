"""LLM provider factory for creating providers from settings."""

from __future__ import annotations

from typing import Optional

from promptpilot.app.config import Settings, get_settings

from .base import LLMProvider
from .errors import ProviderMisconfiguredError
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider


def create_provider(settings: Optional[Settings] = None) -> LLMProvider:
    """
    Create an LLM provider from settings.

    Settings used:
        LLM_PROVIDER: "gemini", "openai", "groq" or "custom" (default: "gemini")
        LLM_API_KEY: API key for the provider (required)
        LLM_API_URL: Endpoint URL (optional except for "custom")
        LLM_TIMEOUT_SECONDS / LLM_CONNECT_TIMEOUT_SECONDS: request timeouts

    Raises:
        ProviderMisconfiguredError: If the key or URL is missing, or the provider is unknown
    """
    s = settings or get_settings()
    provider_type = s.llm_provider
    api_key = s.llm_api_key
    base_url = s.resolved_api_url

    if not api_key:
        raise ProviderMisconfiguredError("API key not configured. Set LLM_API_KEY.")

    if not base_url:
        raise ProviderMisconfiguredError(f"API URL not configured for provider '{provider_type}'. Set LLM_API_URL.")

    if provider_type == "gemini":
        return GeminiProvider(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=s.llm_timeout_seconds,
            connect_timeout_seconds=s.llm_connect_timeout_seconds,
        )

    if provider_type in ("openai", "groq", "custom"):
        # Groq and custom endpoints speak the OpenAI chat-completions format
        return OpenAIProvider(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=s.llm_timeout_seconds,
            connect_timeout_seconds=s.llm_connect_timeout_seconds,
            name=provider_type,
        )

    raise ProviderMisconfiguredError(
        f"Unknown LLM_PROVIDER: {provider_type}. Must be 'gemini', 'openai', 'groq' or 'custom'"
    )


__all__ = ["create_provider"]
