"""
Boundary schemas for model output and the orchestration result types.

Everything the model returns is validated here before the core acts on it. The
router decision schema fails closed: a missing or unknown ``nextAction``, an
out-of-range confidence or a malformed extraction payload rejects the whole
decision. Purely advisory fields (reasoning type, fallback action, self-check)
degrade to None instead of rejecting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from promptpilot.app.orchestration.actions import Action, EXTRACTION_ACTIONS, parse_action
from promptpilot.app.orchestration.errors import DecisionContractError, LLMOutputError
from promptpilot.app.orchestration.parsing import parse_json_object

CONFIDENCE_THRESHOLD = 0.7


class ReasoningType(str, Enum):
    ANALYTICAL = "analytical"
    SEQUENTIAL = "sequential"
    PATTERN_MATCHING = "pattern-matching"
    CONTEXTUAL = "contextual"


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return []


def normalize_tags(value: Any) -> Optional[List[str]]:
    """Tags arrive either as a bare list or wrapped as ``{"tags": [...]}``."""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("tags", [])
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValueError("tags must be a list of strings")
    return _string_list(value)


class SelfCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_action_valid: bool = Field(default=True, alias="isActionValid")
    potential_issues: List[str] = Field(default_factory=list, alias="potentialIssues")
    alternative_action: Optional[str] = Field(default=None, alias="alternativeAction")

    @field_validator("potential_issues", mode="before")
    @classmethod
    def coerce_issues(cls, v: Any) -> List[str]:
        return _string_list(v)

    @field_validator("alternative_action", mode="before")
    @classmethod
    def coerce_alternative(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) and v.strip() else None


class RouterDecision(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    next_action: Action = Field(alias="nextAction")
    reasoning: str = ""
    progress: Optional[str] = None
    extracted_data: Optional[Any] = Field(default=None, alias="extractedData")
    reasoning_type: Optional[ReasoningType] = Field(default=None, alias="reasoningType")
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    self_check: Optional[SelfCheck] = Field(default=None, alias="selfCheck")
    fallback_action: Optional[Action] = Field(default=None, alias="fallbackAction")

    @field_validator("next_action", mode="before")
    @classmethod
    def strip_action(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("reasoning", mode="before")
    @classmethod
    def coerce_reasoning(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @field_validator("progress", mode="before")
    @classmethod
    def coerce_progress(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("reasoning_type", mode="before")
    @classmethod
    def lenient_reasoning_type(cls, v: Any) -> Optional[str]:
        if isinstance(v, str) and v.strip() in {t.value for t in ReasoningType}:
            return v.strip()
        return None

    @field_validator("fallback_action", mode="before")
    @classmethod
    def lenient_fallback(cls, v: Any) -> Optional[Action]:
        return parse_action(v)

    @field_validator("self_check", mode="before")
    @classmethod
    def lenient_self_check(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, SelfCheck)) else None

    @model_validator(mode="after")
    def check_extracted_data(self) -> "RouterDecision":
        if self.next_action not in EXTRACTION_ACTIONS:
            self.extracted_data = None
        elif self.next_action is Action.EXTRACT_TAGS:
            self.extracted_data = normalize_tags(self.extracted_data)
        elif self.extracted_data is not None and not isinstance(self.extracted_data, dict):
            raise ValueError(f"extractedData for {self.next_action.value} must be an object")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ValidationResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    explicit_reasoning: bool = False
    structured_output: bool = False
    tool_separation: bool = False
    conversation_loop: bool = False
    instructional_framing: bool = False
    internal_self_checks: bool = False
    reasoning_type_awareness: bool = False
    fallbacks: bool = False
    overall_clarity: str = ""

    def passed_criteria(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value is True]


class ImprovementSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    improved_prompt: str = Field(alias="improvedPrompt", min_length=1)
    improvements: List[str] = Field(default_factory=list)
    reasoning: str = ""
    context_used: List[str] = Field(default_factory=list, alias="contextUsed")

    @field_validator("improvements", "context_used", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> List[str]:
        return _string_list(v)

    @field_validator("improved_prompt", mode="before")
    @classmethod
    def strip_prompt(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class ExtractedContext(BaseModel):
    """Extraction fragments of one run, merged by context key."""

    personal_info: Optional[Dict[str, Any]] = None
    professional_info: Optional[Dict[str, Any]] = None
    task_context: Optional[Dict[str, Any]] = None
    intent: Optional[Dict[str, Any]] = None
    tone_personality: Optional[Dict[str, Any]] = None
    external_context: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


@dataclass(frozen=True)
class OrchestrationStep:
    action: str
    decision: RouterDecision
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "decision": self.decision.to_dict(),
            "result": _jsonable(self.result),
            "error": self.error,
        }


@dataclass
class OrchestrationResult:
    steps: List[OrchestrationStep] = field(default_factory=list)
    validation_result: Optional[ValidationResult] = None
    extracted_context: Optional[ExtractedContext] = None
    improved_prompt: Optional[ImprovementSuggestion] = None
    errors: List[str] = field(default_factory=list)
    total_steps: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "validation_result": _jsonable(self.validation_result),
            "extracted_context": (
                self.extracted_context.model_dump(exclude_none=True) if self.extracted_context else None
            ),
            "improved_prompt": _jsonable(self.improved_prompt),
            "errors": list(self.errors),
            "total_steps": self.total_steps,
        }


StepCallback = Callable[[OrchestrationStep], None]


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def parse_router_decision(raw: str) -> RouterDecision:
    try:
        payload = parse_json_object(raw)
    except LLMOutputError as exc:
        raise DecisionContractError(str(exc)) from exc
    try:
        return RouterDecision.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err.get("loc", ())) or "<root>" for err in exc.errors()})
        raise DecisionContractError(f"Router decision rejected: invalid {', '.join(fields)}") from exc


def parse_validation_result(raw: str) -> ValidationResult:
    return ValidationResult.model_validate(parse_json_object(raw))


def parse_improvement(raw: str) -> ImprovementSuggestion:
    return ImprovementSuggestion.model_validate(parse_json_object(raw))


__all__ = [
    "CONFIDENCE_THRESHOLD",
    "ReasoningType",
    "SelfCheck",
    "RouterDecision",
    "ValidationResult",
    "ImprovementSuggestion",
    "ExtractedContext",
    "OrchestrationStep",
    "OrchestrationResult",
    "StepCallback",
    "normalize_tags",
    "parse_router_decision",
    "parse_validation_result",
    "parse_improvement",
]
