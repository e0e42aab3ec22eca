from __future__ import annotations

import json
import re
from typing import Any, Dict

from promptpilot.app.orchestration.errors import LLMOutputError

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?")


def clean_json_response(raw: str) -> str:
    """Strip Markdown code fences and any chatter around the outermost JSON object."""
    cleaned = _FENCE_RE.sub("", (raw or "").strip()).strip()
    if cleaned and not cleaned.startswith(("{", "[")):
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            cleaned = cleaned[start : end + 1]
    return cleaned


def parse_json_object(raw: str) -> Dict[str, Any]:
    cleaned = clean_json_response(raw)
    try:
        parsed = json.loads(cleaned)
    except (TypeError, ValueError) as exc:
        raise LLMOutputError("LLM did not return valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise LLMOutputError("LLM response is not a valid object.")
    return parsed


__all__ = ["clean_json_response", "parse_json_object"]
