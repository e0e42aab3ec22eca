"""
User context store.

Keeps one accumulated profile of the user (personal, professional, task, intent,
tone, external tools) built from the extraction fragments of every finished run.
Merging rules:
- list fields are merged without duplicates, keeping first-seen order
- scalar fields are overwritten only by non-empty values
- task history keeps the last 20 tasks, the last 5 become ``recent_tasks``
- one metadata entry per run, last 50 kept

The profile is persisted as a JSON file when a path is given, otherwise it lives
in memory only.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from promptpilot.app.orchestration.schema import ExtractedContext, ValidationResult

logger = logging.getLogger(__name__)

MAX_TASK_HISTORY = 20
MAX_RECENT_TASKS = 5
MAX_METADATA_ENTRIES = 50
DEFAULT_PROMPT_TYPE = "instruction"
DEFAULT_CONFIDENCE_SCORE = 0.8
NO_CONTEXT = "No context available yet"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float, bool)):
        return str(value)
    return None


def _to_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


OptStr = Annotated[Optional[str], BeforeValidator(_to_optional_str)]
StrList = Annotated[List[str], BeforeValidator(_to_str_list)]


def merge_unique(existing: Iterable[str], new_items: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for item in list(existing or []) + list(new_items or []):
        if item not in merged:
            merged.append(item)
    return merged


class _ContextModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PersonalInfo(_ContextModel):
    name: OptStr = None
    location: OptStr = None
    age: OptStr = None
    goals: StrList = Field(default_factory=list)
    interests: StrList = Field(default_factory=list)
    language_preference: OptStr = None


class ProfessionalInfo(_ContextModel):
    job_title: OptStr = None
    domain: OptStr = None
    company: OptStr = None
    ongoing_projects: StrList = Field(default_factory=list)
    tech_stack: StrList = Field(default_factory=list)
    experience: OptStr = None


class TaskHistoryItem(_ContextModel):
    task: str
    timestamp: str


def _to_task_history(value: Any) -> List[Any]:
    # model payloads are open-ended; malformed entries are dropped
    if not isinstance(value, (list, tuple)):
        return []
    items: List[Any] = []
    for item in value:
        if isinstance(item, TaskHistoryItem):
            items.append(item)
            continue
        try:
            items.append(TaskHistoryItem.model_validate(item))
        except ValidationError:
            continue
    return items


class TaskContext(_ContextModel):
    current_task: OptStr = None
    recent_tasks: StrList = Field(default_factory=list)
    task_history: Annotated[List[TaskHistoryItem], BeforeValidator(_to_task_history)] = Field(default_factory=list)


class IntentInfo(_ContextModel):
    primary_intent: OptStr = None
    intent_type: OptStr = None
    expected_output: OptStr = None


class TonePersonality(_ContextModel):
    tone: OptStr = None
    style: OptStr = None
    verbosity: OptStr = None
    preferences: StrList = Field(default_factory=list)


class ExternalContext(_ContextModel):
    tools: StrList = Field(default_factory=list)
    apis: StrList = Field(default_factory=list)
    file_names: StrList = Field(default_factory=list)
    urls: StrList = Field(default_factory=list)
    frameworks: StrList = Field(default_factory=list)
    libraries: StrList = Field(default_factory=list)


class PromptMetadata(_ContextModel):
    tags: StrList = Field(default_factory=list)
    prompt_type: str = DEFAULT_PROMPT_TYPE
    confidence_score: float = DEFAULT_CONFIDENCE_SCORE
    timestamp: str = Field(default_factory=_utcnow_iso)
    original_prompt: str = ""
    validation_result: Optional[Dict[str, Any]] = None


class UserContext(_ContextModel):
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    professional_info: ProfessionalInfo = Field(default_factory=ProfessionalInfo)
    task_context: TaskContext = Field(default_factory=TaskContext)
    intent: IntentInfo = Field(default_factory=IntentInfo)
    tone_personality: TonePersonality = Field(default_factory=TonePersonality)
    external_context: ExternalContext = Field(default_factory=ExternalContext)
    metadata: List[PromptMetadata] = Field(default_factory=list)
    last_updated: Optional[str] = None


def _merge_section(current: _ContextModel, incoming_raw: Dict[str, Any]) -> _ContextModel:
    cls = type(current)
    incoming = cls.model_validate(incoming_raw)
    data = current.model_dump()
    for name in incoming.model_fields_set:
        value = getattr(incoming, name)
        if isinstance(value, list):
            data[name] = merge_unique(data.get(name) or [], value)
        elif value is not None:
            data[name] = value
    return cls.model_validate(data)


def merge_into(
    context: UserContext,
    extracted: ExtractedContext,
    original_prompt: str,
    validation: Optional[ValidationResult] = None,
) -> UserContext:
    """Return a new profile with ``extracted`` folded into ``context``."""
    ctx = context.model_copy(deep=True)

    if extracted.personal_info:
        ctx.personal_info = _merge_section(ctx.personal_info, extracted.personal_info)
    if extracted.professional_info:
        ctx.professional_info = _merge_section(ctx.professional_info, extracted.professional_info)

    task = TaskContext.model_validate(extracted.task_context or {})
    if task.current_task:
        history = ctx.task_context.task_history + [
            TaskHistoryItem(task=task.current_task, timestamp=_utcnow_iso())
        ]
        history = history[-MAX_TASK_HISTORY:]
        ctx.task_context = TaskContext(
            current_task=task.current_task,
            recent_tasks=[item.task for item in history][-MAX_RECENT_TASKS:],
            task_history=history,
        )

    if extracted.intent:
        ctx.intent = _merge_section(ctx.intent, extracted.intent)
    if extracted.tone_personality:
        ctx.tone_personality = _merge_section(ctx.tone_personality, extracted.tone_personality)
    if extracted.external_context:
        ctx.external_context = _merge_section(ctx.external_context, extracted.external_context)

    ctx.metadata.append(
        PromptMetadata(
            tags=extracted.tags or [],
            prompt_type=IntentInfo.model_validate(extracted.intent or {}).intent_type or DEFAULT_PROMPT_TYPE,
            original_prompt=original_prompt,
            validation_result=validation.model_dump() if validation is not None else None,
        )
    )
    ctx.metadata = ctx.metadata[-MAX_METADATA_ENTRIES:]
    ctx.last_updated = _utcnow_iso()
    return ctx


def render_summary(context: UserContext) -> str:
    parts: List[str] = []
    if context.personal_info.name:
        parts.append(f"Name: {context.personal_info.name}")
    if context.personal_info.location:
        parts.append(f"Location: {context.personal_info.location}")
    if context.professional_info.job_title:
        parts.append(f"Role: {context.professional_info.job_title}")
    if context.professional_info.domain:
        parts.append(f"Domain: {context.professional_info.domain}")
    if context.professional_info.tech_stack:
        parts.append(f"Tech Stack: {', '.join(context.professional_info.tech_stack)}")
    if context.task_context.current_task:
        parts.append(f"Current Task: {context.task_context.current_task}")
    if context.tone_personality.tone:
        parts.append(f"Preferred Tone: {context.tone_personality.tone}")
    if context.external_context.tools:
        parts.append(f"Tools: {', '.join(context.external_context.tools)}")
    return "\n".join(parts) if parts else NO_CONTEXT


class ContextStore:
    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._memory = UserContext()

    def get_user_context(self) -> UserContext:
        with self._lock:
            return self._load()

    def update_user_context(
        self,
        extracted: ExtractedContext,
        original_prompt: str,
        validation: Optional[ValidationResult] = None,
    ) -> UserContext:
        with self._lock:
            updated = merge_into(self._load(), extracted, original_prompt, validation)
            self._save(updated)
        logger.info(
            "[CONTEXT] updated",
            extra={"sections": sorted(extracted.model_dump(exclude_none=True)), "metadata": len(updated.metadata)},
        )
        return updated

    def get_context_summary(self, pending: Optional[ExtractedContext] = None) -> str:
        """
        Summary of the stored profile. ``pending`` fragments from a run in progress
        are folded into a throwaway copy so they show up without being persisted.
        """
        context = self.get_user_context()
        if pending is not None and not pending.is_empty():
            try:
                context = merge_into(context, pending, original_prompt="")
            except (ValidationError, ValueError) as exc:
                logger.warning("[CONTEXT] pending fragments not merged", extra={"error": type(exc).__name__})
        return render_summary(context)

    def clear_user_context(self) -> None:
        with self._lock:
            self._save(UserContext(last_updated=_utcnow_iso()))
        logger.info("[CONTEXT] cleared")

    def _load(self) -> UserContext:
        if self.path is None:
            return self._memory.model_copy(deep=True)
        if not self.path.exists():
            return UserContext()
        try:
            return UserContext.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("[CONTEXT] unreadable context file, starting fresh", extra={"error": type(exc).__name__})
            return UserContext()

    def _save(self, context: UserContext) -> None:
        if self.path is None:
            self._memory = context.model_copy(deep=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(context.model_dump(by_alias=True), indent=2), encoding="utf-8")
        os.replace(tmp, self.path)


__all__ = [
    "ContextStore",
    "UserContext",
    "PersonalInfo",
    "ProfessionalInfo",
    "TaskContext",
    "TaskHistoryItem",
    "IntentInfo",
    "TonePersonality",
    "ExternalContext",
    "PromptMetadata",
    "merge_into",
    "merge_unique",
    "render_summary",
    "NO_CONTEXT",
]
