"""
Session-wide circuit breaker for provider rate limits.

Every rate-limited call in the process (router, validation, improvement) feeds the
same counter. Once the cumulative count reaches the threshold the breaker opens and
every further call must fail fast until the cooldown since the last recorded
failure has elapsed; the first query after that resets the breaker to closed.

The breaker is a plain object handed to its users. One instance is shared per
process by the application wiring; tests build isolated instances with a fake clock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from promptpilot.app.observability import counter
from promptpilot.app.providers.errors import RATE_LIMIT_STATUS, error_status

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RESET_TIMEOUT_SECONDS = 60


@dataclass
class CircuitBreakerState:
    failure_count: int = 0
    total_retries: int = 0
    last_failure_time: Optional[float] = None
    is_open: bool = False


class CircuitBreaker:
    """Counts rate-limit failures across all calls and blocks calls once tripped."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_retries = max_retries
        self.reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitBreakerState()

    def is_open(self) -> bool:
        with self._lock:
            if self._state.is_open and self._state.last_failure_time is not None:
                elapsed = self._clock() - self._state.last_failure_time
                if elapsed >= self.reset_timeout_seconds:
                    logger.info("[BREAKER] cooldown elapsed, closing")
                    self._state = CircuitBreakerState()
                    return False
                return True
            return self._state.is_open

    def record_failure(self, error: BaseException) -> None:
        """Count ``error`` if it is a rate limit; other failures never trip the breaker."""
        if error_status(error) != RATE_LIMIT_STATUS:
            return
        with self._lock:
            self._state.failure_count += 1
            self._state.total_retries += 1
            self._state.last_failure_time = self._clock()
            total = self._state.total_retries
            just_opened = not self._state.is_open and total >= self.max_retries
            if just_opened:
                self._state.is_open = True

        logger.warning(
            "[BREAKER] rate limit recorded",
            extra={"total_retries": total, "max_retries": self.max_retries},
        )
        if just_opened:
            logger.error(
                "[BREAKER] opened",
                extra={"max_retries": self.max_retries, "cooldown_seconds": self.reset_timeout_seconds},
            )
            counter("breaker_opened_total")

    def record_success(self) -> None:
        with self._lock:
            # only the cooldown may close an open breaker
            if not self._state.is_open:
                self._state.failure_count = 0

    def can_retry(self) -> bool:
        with self._lock:
            return self._state.total_retries < self.max_retries

    def get_remaining_cooldown(self) -> int:
        """Whole seconds until the breaker closes, 0 when closed."""
        with self._lock:
            if not self._state.is_open or self._state.last_failure_time is None:
                return 0
            elapsed = self._clock() - self._state.last_failure_time
            remaining = max(0.0, self.reset_timeout_seconds - elapsed)
            return int(math.ceil(remaining))

    def open(self) -> None:
        """Trip the breaker manually (emergency shutoff)."""
        with self._lock:
            self._state.is_open = True
            self._state.last_failure_time = self._clock()
        logger.warning("[BREAKER] opened manually")

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState()
        logger.info("[BREAKER] reset")

    def get_state(self) -> CircuitBreakerState:
        with self._lock:
            return replace(self._state)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RESET_TIMEOUT_SECONDS",
]
