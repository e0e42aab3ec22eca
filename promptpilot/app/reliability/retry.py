"""
Retry policy for provider calls.

Only two failure classes are retried: rate limits (HTTP 429) and overloads (HTTP
503 or an explicit overload message). Delays grow exponentially per attempt with
+/-20% uniform jitter and a hard cap. Rate-limit failures are always recorded in
the shared circuit breaker, and a retry is refused as soon as the breaker is open
or has no retry budget left.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from promptpilot.app.observability import counter
from promptpilot.app.providers.errors import (
    CircuitBreakerOpenError,
    RATE_LIMIT_STATUS,
    error_status,
    is_overload_error,
)
from promptpilot.app.reliability.breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES_DEFAULT = 3
RATE_LIMIT_BASE_DELAY_MS = 2000
OVERLOAD_BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30000
JITTER_RATIO = 0.2

FAILURE_RATE_LIMIT = "rate_limit"
FAILURE_OVERLOAD = "overload"


def classify_failure(error: BaseException) -> Optional[str]:
    """Return ``"rate_limit"``, ``"overload"`` or None for non-retryable errors."""
    if isinstance(error, CircuitBreakerOpenError):
        return None
    if error_status(error) == RATE_LIMIT_STATUS:
        return FAILURE_RATE_LIMIT
    if is_overload_error(error):
        return FAILURE_OVERLOAD
    return None


@dataclass
class RetryPolicy:
    breaker: CircuitBreaker
    max_retries: int = MAX_RETRIES_DEFAULT
    rate_limit_base_delay_ms: int = RATE_LIMIT_BASE_DELAY_MS
    overload_base_delay_ms: int = OVERLOAD_BASE_DELAY_MS
    max_delay_ms: int = MAX_DELAY_MS
    rng: Callable[[], float] = field(default=random.random)

    def should_retry(self, attempt_index: int, error: BaseException) -> bool:
        kind = classify_failure(error)
        if kind is None:
            logger.info("[RETRY] non-retryable error", extra={"status": error_status(error)})
            return False

        if kind == FAILURE_RATE_LIMIT:
            self.breaker.record_failure(error)
            if self.breaker.is_open():
                logger.error("[RETRY] breaker open after rate limit, not retrying")
                return False
            if not self.breaker.can_retry():
                logger.error("[RETRY] session retry budget exhausted")
                return False
        elif self.breaker.is_open():
            return False

        if attempt_index >= self.max_retries:
            logger.warning(
                "[RETRY] max retries reached",
                extra={"attempt": attempt_index, "max_retries": self.max_retries, "kind": kind},
            )
            return False

        logger.info(
            "[RETRY] scheduling retry",
            extra={"attempt": attempt_index + 1, "max_retries": self.max_retries, "kind": kind},
        )
        return True

    def compute_delay(self, attempt_index: int, is_rate_limit: bool) -> float:
        """Backoff in milliseconds for the retry following ``attempt_index``."""
        base = self.rate_limit_base_delay_ms if is_rate_limit else self.overload_base_delay_ms
        exponential = (2 ** attempt_index) * base
        jitter = exponential * JITTER_RATIO * (2.0 * self.rng() - 1.0)
        return max(0.0, min(exponential + jitter, float(self.max_delay_ms)))


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "llm",
) -> T:
    """
    Run ``fn`` under ``policy``.

    The breaker is consulted before every attempt so no request is issued while it
    is open. The last error is re-raised once the policy refuses another attempt.
    """
    breaker = policy.breaker
    attempt_index = 0
    while True:
        if breaker.is_open():
            remaining = breaker.get_remaining_cooldown()
            counter("llm_call_blocked_total", labels={"call": label})
            raise CircuitBreakerOpenError(remaining)

        try:
            result = await fn()
        except CircuitBreakerOpenError:
            raise
        except Exception as exc:
            if not policy.should_retry(attempt_index, exc):
                raise
            kind = classify_failure(exc)
            delay_ms = policy.compute_delay(attempt_index, kind == FAILURE_RATE_LIMIT)
            counter("llm_retry_total", labels={"call": label, "kind": kind or "unknown"})
            logger.info(
                "[RETRY] backing off",
                extra={"call": label, "delay_ms": int(delay_ms), "attempt": attempt_index + 1},
            )
            await sleep(delay_ms / 1000.0)
            attempt_index += 1
            continue

        breaker.record_success()
        return result


__all__ = [
    "RetryPolicy",
    "call_with_retries",
    "classify_failure",
    "FAILURE_RATE_LIMIT",
    "FAILURE_OVERLOAD",
    "MAX_RETRIES_DEFAULT",
    "RATE_LIMIT_BASE_DELAY_MS",
    "OVERLOAD_BASE_DELAY_MS",
    "MAX_DELAY_MS",
]
