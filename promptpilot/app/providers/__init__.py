from .errors import (
    CircuitBreakerOpenError,
    LLMProviderError,
    ProviderMisconfiguredError,
    is_rate_limit_error,
)
from .base import LLMProvider, LLMRequest, LLMResponse
from .factory import create_provider

__all__ = [
    "CircuitBreakerOpenError",
    "LLMProviderError",
    "ProviderMisconfiguredError",
    "is_rate_limit_error",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "create_provider",
]
