from __future__ import annotations

from typing import Optional

RATE_LIMIT_STATUS = 429
OVERLOAD_STATUS = 503

_RATE_LIMIT_MARKERS = ("429", "rate limit", "circuit breaker")


class LLMProviderError(Exception):
    """Raised by a transport when the provider call fails.

    ``status_code`` carries the HTTP status when one was received so the retry
    policy can tell rate limits (429) and overloads (503) from everything else.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.original_error = original_error


class ProviderMisconfiguredError(Exception):
    """Raised when provider configuration is missing or invalid."""


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the provider while the breaker is open."""

    def __init__(self, remaining_cooldown: int) -> None:
        super().__init__(
            f"Circuit breaker open: rate limit protection active. "
            f"Please wait {remaining_cooldown} seconds before trying again."
        )
        self.remaining_cooldown = remaining_cooldown


def error_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, CircuitBreakerOpenError):
        return True
    if error_status(error) == RATE_LIMIT_STATUS:
        return True
    return mentions_rate_limit(str(error))


def is_quota_error(error: BaseException) -> bool:
    """Status-based check for an exhausted provider quota; message text is ignored."""
    return isinstance(error, CircuitBreakerOpenError) or error_status(error) == RATE_LIMIT_STATUS


def is_overload_error(error: BaseException) -> bool:
    if error_status(error) == OVERLOAD_STATUS:
        return True
    return "overload" in str(error).lower()


def mentions_rate_limit(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


__all__ = [
    "RATE_LIMIT_STATUS",
    "OVERLOAD_STATUS",
    "LLMProviderError",
    "ProviderMisconfiguredError",
    "CircuitBreakerOpenError",
    "error_status",
    "is_rate_limit_error",
    "is_quota_error",
    "is_overload_error",
    "mentions_rate_limit",
]
