"""
Request ID middleware.

Every HTTP response carries ``X-Request-ID``. A well-formed incoming id is
reused, otherwise a fresh uuid4 is generated. One log line per request with
method, path, status and duration; bodies are never logged since they carry
user prompts.
"""

import logging
import re
import time
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = b"x-request-id"

# hex/uuid-ish, max 64 chars
_SAFE_REQUEST_ID_PATTERN = re.compile(r"^[a-fA-F0-9\-]{1,64}$")


def incoming_request_id(headers) -> Optional[str]:
    for name, value in headers or []:
        if isinstance(name, bytes) and name.lower() == REQUEST_ID_HEADER and isinstance(value, bytes):
            candidate = value.decode("utf-8", errors="replace").strip()
            if candidate and _SAFE_REQUEST_ID_PATTERN.match(candidate):
                return candidate
    return None


class RequestIdMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.monotonic()
        request_id = incoming_request_id(scope.get("headers")) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id
        status_code: Optional[int] = None

        async def send_with_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                headers = [h for h in message.get("headers", []) if h[0].lower() != REQUEST_ID_HEADER]
                headers.append((REQUEST_ID_HEADER, request_id.encode("utf-8")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            logger.info(
                "[HTTP] request",
                extra={
                    "method": scope.get("method", "?"),
                    "path": scope.get("path", "?"),
                    "status": status_code,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                    "request_id": request_id,
                },
            )


def get_request_id(request) -> Optional[str]:
    state = getattr(request, "scope", {}).get("state") or {}
    return state.get("request_id")


__all__ = ["RequestIdMiddleware", "get_request_id", "incoming_request_id"]
