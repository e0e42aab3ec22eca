from __future__ import annotations

from .logging import structured_log, safe_redact
from .metrics import counter, histogram, event

__all__ = [
    "structured_log",
    "safe_redact",
    "counter",
    "histogram",
    "event",
]
