"""
Fixed action vocabulary for the router/orchestrator loop.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Union


class Action(str, Enum):
    VALIDATE = "validate"
    EXTRACT_PERSONAL = "extractPersonal"
    EXTRACT_PROFESSIONAL = "extractProfessional"
    EXTRACT_TASK = "extractTask"
    EXTRACT_INTENT = "extractIntent"
    EXTRACT_TONE = "extractTone"
    EXTRACT_EXTERNAL = "extractExternal"
    EXTRACT_TAGS = "extractTags"
    GENERATE_IMPROVEMENT = "generateImprovement"
    DONE = "done"

    def __str__(self) -> str:
        return self.value


EXTRACTION_ACTIONS: FrozenSet[Action] = frozenset(
    [
        Action.EXTRACT_PERSONAL,
        Action.EXTRACT_PROFESSIONAL,
        Action.EXTRACT_TASK,
        Action.EXTRACT_INTENT,
        Action.EXTRACT_TONE,
        Action.EXTRACT_EXTERNAL,
        Action.EXTRACT_TAGS,
    ]
)

# Where each extraction lands in the merged extracted context.
CONTEXT_KEYS: Dict[Action, str] = {
    Action.EXTRACT_PERSONAL: "personal_info",
    Action.EXTRACT_PROFESSIONAL: "professional_info",
    Action.EXTRACT_TASK: "task_context",
    Action.EXTRACT_INTENT: "intent",
    Action.EXTRACT_TONE: "tone_personality",
    Action.EXTRACT_EXTERNAL: "external_context",
    Action.EXTRACT_TAGS: "tags",
}

ACTION_DISPLAY_NAMES: Dict[Action, str] = {
    Action.VALIDATE: "Validate Prompt",
    Action.EXTRACT_PERSONAL: "Extract Personal Info",
    Action.EXTRACT_PROFESSIONAL: "Extract Professional Info",
    Action.EXTRACT_TASK: "Extract Task Context",
    Action.EXTRACT_INTENT: "Extract Intent",
    Action.EXTRACT_TONE: "Extract Tone/Style",
    Action.EXTRACT_EXTERNAL: "Extract External Context",
    Action.EXTRACT_TAGS: "Generate Tags",
    Action.GENERATE_IMPROVEMENT: "Generate Improvement",
    Action.DONE: "Complete",
}


def parse_action(value: Union[str, Action, None]) -> Action | None:
    if isinstance(value, Action):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Action(value.strip())
    except ValueError:
        return None


def is_extraction_action(action: Union[str, Action]) -> bool:
    return parse_action(action) in EXTRACTION_ACTIONS


def get_action_display_name(action: Union[str, Action]) -> str:
    """Human-readable label for progress displays; unknown names are echoed back."""
    parsed = parse_action(action)
    if parsed is None:
        return str(action)
    return ACTION_DISPLAY_NAMES[parsed]


__all__ = [
    "Action",
    "EXTRACTION_ACTIONS",
    "CONTEXT_KEYS",
    "ACTION_DISPLAY_NAMES",
    "parse_action",
    "is_extraction_action",
    "get_action_display_name",
]
