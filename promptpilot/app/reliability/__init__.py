from promptpilot.app.reliability.breaker import CircuitBreaker, CircuitBreakerState
from promptpilot.app.reliability.retry import RetryPolicy, call_with_retries, classify_failure

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "RetryPolicy",
    "call_with_retries",
    "classify_failure",
]
