from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from promptpilot.app.orchestration.actions import Action, EXTRACTION_ACTIONS
from promptpilot.app.orchestration.errors import ActionExecutionError
from promptpilot.app.orchestration.prompts import build_improvement_prompt, build_validation_prompt
from promptpilot.app.orchestration.schema import (
    ImprovementSuggestion,
    RouterDecision,
    ValidationResult,
    parse_improvement,
    parse_validation_result,
)
from promptpilot.app.providers.client import ResilientLLMClient

logger = logging.getLogger(__name__)

NO_CONTEXT_SUMMARY = "No context available yet"


class ActionExecutor:
    """
    Runs one routed action.

    Only ``validate`` and ``generateImprovement`` reach the model. Extraction
    actions return the payload the router already produced, so they cost no
    extra call.
    """

    def __init__(self, client: ResilientLLMClient) -> None:
        self.client = client

    async def validate_prompt_quality(self, prompt: str) -> ValidationResult:
        raw = await self.client.send(build_validation_prompt(prompt), label="validate")
        return parse_validation_result(raw)

    async def generate_improved_prompt(self, prompt: str, context_summary: str) -> ImprovementSuggestion:
        raw = await self.client.send(
            build_improvement_prompt(prompt, context_summary or NO_CONTEXT_SUMMARY),
            label="improve",
        )
        return parse_improvement(raw)

    async def execute(
        self,
        action: Action,
        decision: RouterDecision,
        prompt: str,
        context_summary: Optional[Callable[[], str]] = None,
    ) -> Any:
        if action is Action.VALIDATE:
            return await self.validate_prompt_quality(prompt)

        if action is Action.GENERATE_IMPROVEMENT:
            summary = context_summary() if context_summary is not None else NO_CONTEXT_SUMMARY
            return await self.generate_improved_prompt(prompt, summary)

        if action in EXTRACTION_ACTIONS:
            return extraction_result(action, decision)

        raise ActionExecutionError(action.value, "not an executable action")


def extraction_result(action: Action, decision: RouterDecision) -> Any:
    """The router's inline payload, or an empty one when nothing was extracted."""
    if decision.extracted_data is not None:
        return decision.extracted_data
    logger.info("[EXEC] no inline data for extraction", extra={"action": action.value})
    return [] if action is Action.EXTRACT_TAGS else {}


__all__ = ["ActionExecutor", "extraction_result", "NO_CONTEXT_SUMMARY"]
