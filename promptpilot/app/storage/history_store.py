"""
Prompt history: one entry per finished orchestration run, newest first.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 100
TOP_TAGS = 10


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RouterDecisionSummary(BaseModel):
    action: str
    reasoning: str = ""


class PromptHistoryEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    timestamp: str = Field(default_factory=_utcnow_iso)
    original_prompt: str
    validation_result: Optional[Dict[str, Any]] = None
    extracted_context: Optional[Dict[str, Any]] = None
    improved_prompt: Optional[Dict[str, Any]] = None
    router_decisions: List[RouterDecisionSummary] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    def matches(self, query: str) -> bool:
        q = query.lower()
        if q in self.original_prompt.lower():
            return True
        improved = (self.improved_prompt or {}).get("improved_prompt") or ""
        if q in str(improved).lower():
            return True
        return any(q in tag.lower() for tag in self.tags)


_ENTRIES = TypeAdapter(List[PromptHistoryEntry])


class HistoryStore:
    def __init__(self, path: Optional[Union[str, Path]] = None, max_entries: int = MAX_HISTORY_ENTRIES) -> None:
        self.path = Path(path) if path is not None else None
        self.max_entries = max(1, max_entries)
        self._lock = threading.Lock()
        self._memory: List[PromptHistoryEntry] = []

    def save_prompt_to_history(self, entry: PromptHistoryEntry) -> PromptHistoryEntry:
        with self._lock:
            entries = [entry] + self._load()
            self._save(entries[: self.max_entries])
        logger.info("[HISTORY] saved", extra={"entry_id": entry.id, "steps": len(entry.router_decisions)})
        return entry

    def list_entries(self, limit: Optional[int] = None) -> List[PromptHistoryEntry]:
        with self._lock:
            entries = self._load()
        return entries[:limit] if limit is not None else entries

    def get_entry(self, entry_id: str) -> Optional[PromptHistoryEntry]:
        for entry in self.list_entries():
            if entry.id == entry_id:
                return entry
        return None

    def delete_entry(self, entry_id: str) -> bool:
        with self._lock:
            entries = self._load()
            kept = [e for e in entries if e.id != entry_id]
            if len(kept) == len(entries):
                return False
            self._save(kept)
        logger.info("[HISTORY] deleted", extra={"entry_id": entry_id})
        return True

    def clear(self) -> None:
        with self._lock:
            self._save([])
        logger.info("[HISTORY] cleared")

    def search(self, query: str) -> List[PromptHistoryEntry]:
        query = (query or "").strip()
        if not query:
            return self.list_entries()
        return [e for e in self.list_entries() if e.matches(query)]

    def by_tag(self, tag: str) -> List[PromptHistoryEntry]:
        return [e for e in self.list_entries() if tag in e.tags]

    def all_tags(self) -> List[str]:
        return sorted({tag for e in self.list_entries() for tag in e.tags})

    def stats(self) -> Dict[str, Any]:
        entries = self.list_entries()
        tag_counts = Counter(tag for e in entries for tag in e.tags)
        return {
            "total_prompts": len(entries),
            "total_validated": sum(1 for e in entries if e.validation_result),
            "total_improved": sum(1 for e in entries if e.improved_prompt),
            "most_used_tags": [{"tag": t, "count": c} for t, c in tag_counts.most_common(TOP_TAGS)],
            "oldest_prompt": entries[-1].timestamp if entries else None,
            "newest_prompt": entries[0].timestamp if entries else None,
        }

    def _load(self) -> List[PromptHistoryEntry]:
        if self.path is None:
            return list(self._memory)
        if not self.path.exists():
            return []
        try:
            return _ENTRIES.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("[HISTORY] unreadable history file, starting empty", extra={"error": type(exc).__name__})
            return []

    def _save(self, entries: List[PromptHistoryEntry]) -> None:
        if self.path is None:
            self._memory = list(entries)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(_ENTRIES.dump_python(entries, mode="json"), indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


__all__ = ["HistoryStore", "PromptHistoryEntry", "RouterDecisionSummary", "MAX_HISTORY_ENTRIES"]
