from __future__ import annotations

import functools
import json
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_PROVIDERS = ("gemini", "openai", "groq", "custom")

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "gemini": {
        "api_url": "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent",
        "model_name": "gemini-2.0-flash",
    },
    "openai": {
        "api_url": "https://api.openai.com/v1/chat/completions",
        "model_name": "gpt-4o-mini",
    },
    "groq": {
        "api_url": "https://api.groq.com/openai/v1/chat/completions",
        "model_name": "llama-3.1-8b-instant",
    },
}


def provider_defaults(provider: str) -> Dict[str, str]:
    return dict(PROVIDER_DEFAULTS.get((provider or "").strip().lower(), {}))


def _parse_cors_origins(value: Any) -> List[str]:
    if value is None:
        return []
    text = str(value).strip()
    if not text:
        return []
    if text == "*":
        return ["*"]
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
    return [item.strip() for item in text.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # App / env
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field("", alias="CORS_ORIGINS")

    # LLM provider
    llm_provider: str = Field("gemini", alias="LLM_PROVIDER")
    llm_api_key: Optional[str] = Field(None, alias="LLM_API_KEY")
    llm_api_url: Optional[str] = Field(None, alias="LLM_API_URL")
    llm_model: Optional[str] = Field(None, alias="LLM_MODEL")
    llm_timeout_seconds: float = Field(30.0, alias="LLM_TIMEOUT_SECONDS")
    llm_connect_timeout_seconds: float = Field(10.0, alias="LLM_CONNECT_TIMEOUT_SECONDS")
    llm_temperature: float = Field(0.4, alias="LLM_TEMPERATURE")

    # Retry policy
    retry_max_retries: int = Field(3, alias="RETRY_MAX_RETRIES")
    retry_rate_limit_base_delay_ms: int = Field(2000, alias="RETRY_RATE_LIMIT_BASE_DELAY_MS")
    retry_overload_base_delay_ms: int = Field(1000, alias="RETRY_OVERLOAD_BASE_DELAY_MS")
    retry_max_delay_ms: int = Field(30000, alias="RETRY_MAX_DELAY_MS")

    # Session-wide circuit breaker
    breaker_max_retries: int = Field(3, alias="BREAKER_MAX_RETRIES")
    breaker_reset_timeout_seconds: int = Field(60, alias="BREAKER_RESET_TIMEOUT_SECONDS")

    # Orchestration
    orchestrator_max_iterations: int = Field(15, alias="ORCHESTRATOR_MAX_ITERATIONS")

    # Local persistence
    data_dir: str = Field(".promptpilot", alias="DATA_DIR")
    history_max_entries: int = Field(100, alias="HISTORY_MAX_ENTRIES")

    @field_validator(
        "retry_max_retries",
        "retry_rate_limit_base_delay_ms",
        "retry_overload_base_delay_ms",
        "retry_max_delay_ms",
        "breaker_max_retries",
        "breaker_reset_timeout_seconds",
        "orchestrator_max_iterations",
        "history_max_entries",
    )
    @classmethod
    def clamp_non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("llm_timeout_seconds", "llm_connect_timeout_seconds")
    @classmethod
    def clamp_timeout(cls, v: float) -> float:
        return v if v > 0 else 30.0

    @field_validator("app_env", "llm_provider")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return (v or "").strip().lower()

    @property
    def resolved_api_url(self) -> Optional[str]:
        return self.llm_api_url or provider_defaults(self.llm_provider).get("api_url")

    @property
    def resolved_model(self) -> Optional[str]:
        return self.llm_model or provider_defaults(self.llm_provider).get("model_name")

    def cors_origins_list(self) -> List[str]:
        return _parse_cors_origins(self.cors_origins)


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def validate_for_env(settings: Settings) -> Dict[str, Any]:
    issues: list[str] = []
    if settings.llm_provider not in SUPPORTED_PROVIDERS:
        issues.append(f"LLM_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}")
    if not settings.llm_api_key:
        issues.append("LLM_API_KEY is not set; analysis requests will fail")
    if not settings.resolved_api_url:
        issues.append("LLM_API_URL is required for the custom provider")
    if settings.breaker_max_retries == 0:
        issues.append("BREAKER_MAX_RETRIES=0 opens the breaker on the first rate limit")
    summary = settings_public_summary(settings)
    summary["issues"] = issues
    return summary


def settings_public_summary(settings: Optional[Settings] = None) -> Dict[str, Any]:
    s = settings or get_settings()
    return {
        "env": s.app_env,
        "llm_provider": s.llm_provider,
        "llm_model": s.resolved_model,
        "llm_api_key_set": bool(s.llm_api_key),
        "llm_timeout_seconds": s.llm_timeout_seconds,
        "retry_max_retries": s.retry_max_retries,
        "breaker_max_retries": s.breaker_max_retries,
        "breaker_reset_timeout_seconds": s.breaker_reset_timeout_seconds,
        "orchestrator_max_iterations": s.orchestrator_max_iterations,
    }


__all__ = [
    "PROVIDER_DEFAULTS",
    "SUPPORTED_PROVIDERS",
    "Settings",
    "get_settings",
    "provider_defaults",
    "settings_public_summary",
    "validate_for_env",
]
