from .actions import Action, EXTRACTION_ACTIONS, get_action_display_name
from .errors import (
    ActionExecutionError,
    DecisionContractError,
    LLMOutputError,
    OrchestrationAbortedError,
)
from .schema import (
    ExtractedContext,
    ImprovementSuggestion,
    OrchestrationResult,
    OrchestrationStep,
    RouterDecision,
    ValidationResult,
    parse_router_decision,
)
from .executor import ActionExecutor
from .router import Router, fallback_decision
from .orchestrator import Orchestrator, get_orchestration_status

__all__ = [
    "Action",
    "EXTRACTION_ACTIONS",
    "get_action_display_name",
    "ActionExecutionError",
    "DecisionContractError",
    "LLMOutputError",
    "OrchestrationAbortedError",
    "ExtractedContext",
    "ImprovementSuggestion",
    "OrchestrationResult",
    "OrchestrationStep",
    "RouterDecision",
    "ValidationResult",
    "parse_router_decision",
    "ActionExecutor",
    "Router",
    "fallback_decision",
    "Orchestrator",
    "get_orchestration_status",
]
