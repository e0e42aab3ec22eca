from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from promptpilot.app.config import Settings, get_settings, safe_error_detail
from promptpilot.app.observability import counter, histogram
from promptpilot.app.reliability.breaker import CircuitBreaker
from promptpilot.app.reliability.retry import RetryPolicy, call_with_retries

from .base import LLMProvider, LLMRequest
from .errors import is_rate_limit_error

logger = logging.getLogger(__name__)


class ResilientLLMClient:
    """Prompt-in, text-out transport guarded by the retry policy and the shared breaker.

    Every logical call (router decision, validation, improvement) goes through
    ``send`` so the session-wide breaker sees all rate-limit failures.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        breaker: CircuitBreaker,
        policy: Optional[RetryPolicy] = None,
        model: str = "default",
        temperature: float = 0.4,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.breaker = breaker
        self.policy = policy or RetryPolicy(breaker=breaker)
        self.model = model
        self.temperature = temperature
        self._sleep = sleep

    async def send(self, prompt_text: str, *, label: str = "llm") -> str:
        request = LLMRequest(prompt=prompt_text, model=self.model, temperature=self.temperature)

        async def _attempt() -> str:
            response = await self.provider.complete(request)
            return response.text

        start = time.monotonic()
        try:
            text = await call_with_retries(_attempt, self.policy, sleep=self._sleep, label=label)
        except Exception as exc:
            counter("llm_call_failed_total", labels={"call": label})
            logger.warning(
                "[LLM] call failed",
                extra={
                    "call": label,
                    "provider": self.provider.name,
                    "rate_limited": is_rate_limit_error(exc),
                    "detail": safe_error_detail(exc),
                },
            )
            raise
        histogram("llm_call_latency_ms", (time.monotonic() - start) * 1000, labels={"call": label})
        counter("llm_call_total", labels={"call": label})
        return text


def build_client(
    provider: LLMProvider,
    breaker: CircuitBreaker,
    settings: Optional[Settings] = None,
) -> ResilientLLMClient:
    s = settings or get_settings()
    policy = RetryPolicy(
        breaker=breaker,
        max_retries=s.retry_max_retries,
        rate_limit_base_delay_ms=s.retry_rate_limit_base_delay_ms,
        overload_base_delay_ms=s.retry_overload_base_delay_ms,
        max_delay_ms=s.retry_max_delay_ms,
    )
    return ResilientLLMClient(
        provider,
        breaker=breaker,
        policy=policy,
        model=s.resolved_model or "default",
        temperature=s.llm_temperature,
    )


__all__ = ["ResilientLLMClient", "build_client"]
