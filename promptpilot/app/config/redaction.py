from __future__ import annotations

import re

_API_KEY_PATTERN = re.compile(r"(sk-[A-Za-z0-9_\-]{8,}|gsk_[A-Za-z0-9]{8,}|AIza[0-9A-Za-z_\-]{20,})")
_QUERY_KEY_PATTERN = re.compile(r"([?&]key=)[^&\s]+", re.IGNORECASE)


def redact_secrets(s: str) -> str:
    if not s:
        return s
    redacted = _API_KEY_PATTERN.sub("[redacted]", s)
    redacted = _QUERY_KEY_PATTERN.sub(r"\1[redacted]", redacted)
    redacted = re.sub(r"(Authorization:\s*Bearer\s+)[^\s]+", r"\1[redacted]", redacted, flags=re.IGNORECASE)
    return redacted


def safe_error_detail(exc: BaseException) -> str:
    text = redact_secrets(str(exc))
    return text[:200]


__all__ = ["redact_secrets", "safe_error_detail"]
