"""
Router: asks the model for the next single action and guards its answer.

The model output is advisory. Every decision passes through, in order:
- the schema (fail closed, see ``schema.parse_router_decision``)
- the duplicate guard (never propose an already completed action)
- the confidence guard (below 0.7 with self-reported issues, prefer the model's fallback)
- the ordering guard (validate first, generateImprovement before done)

Whenever the call itself fails or the answer is unusable, ``fallback_decision``
picks the next action deterministically. A tripped circuit breaker is the one
failure that is never absorbed here: it propagates so the orchestrator can abort.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from promptpilot.app.config import safe_error_detail
from promptpilot.app.observability import counter
from promptpilot.app.orchestration.actions import Action
from promptpilot.app.orchestration.prompts import build_router_prompt
from promptpilot.app.orchestration.schema import (
    CONFIDENCE_THRESHOLD,
    ReasoningType,
    RouterDecision,
    SelfCheck,
    parse_router_decision,
)
from promptpilot.app.providers.client import ResilientLLMClient
from promptpilot.app.providers.errors import (
    CircuitBreakerOpenError,
    RATE_LIMIT_STATUS,
    error_status,
    mentions_rate_limit,
)

logger = logging.getLogger(__name__)

DUPLICATE_PREFIX = "Using fallback: "
LOW_CONFIDENCE_PREFIX = "Low confidence fallback: "


def _completed_names(completed_actions: Sequence[Union[str, Action]]) -> List[str]:
    return [a.value if isinstance(a, Action) else str(a) for a in completed_actions]


def fallback_decision(completed_actions: Sequence[Union[str, Action]], reason: str) -> RouterDecision:
    """Deterministic next action for ``completed_actions``; first matching rule wins."""
    completed = _completed_names(completed_actions)
    logger.info("[ROUTER] using fallback", extra={"reason": reason, "completed": len(completed)})
    counter("router_fallback_total")

    if mentions_rate_limit(reason):
        logger.error("[ROUTER] rate limit in fallback reason, stopping")
        return RouterDecision(
            next_action=Action.DONE,
            reasoning=f"Stopping due to rate limit: {reason}",
            reasoning_type=ReasoningType.SEQUENTIAL,
            confidence=1.0,
            self_check=SelfCheck(is_action_valid=True, potential_issues=["Rate limit reached"]),
            fallback_action=Action.DONE,
        )

    if not completed:
        return RouterDecision(
            next_action=Action.VALIDATE,
            reasoning=f"Fallback: Starting with mandatory validation ({reason})",
            progress="Step 1",
            reasoning_type=ReasoningType.SEQUENTIAL,
            confidence=1.0,
            self_check=SelfCheck(
                is_action_valid=True,
                potential_issues=["Using fallback due to error"],
                alternative_action=Action.EXTRACT_INTENT.value,
            ),
            fallback_action=Action.EXTRACT_INTENT,
        )

    if completed == [Action.VALIDATE.value]:
        return RouterDecision(
            next_action=Action.EXTRACT_INTENT,
            reasoning=f"Fallback: Extracting intent after validation ({reason})",
            progress="Step 2",
            reasoning_type=ReasoningType.SEQUENTIAL,
            confidence=0.6,
            self_check=SelfCheck(
                is_action_valid=True,
                potential_issues=["Using fallback"],
                alternative_action=Action.EXTRACT_TAGS.value,
            ),
            fallback_action=Action.GENERATE_IMPROVEMENT,
        )

    if len(completed) > 2 and Action.EXTRACT_TAGS.value not in completed:
        return RouterDecision(
            next_action=Action.EXTRACT_TAGS,
            reasoning=f"Fallback: Generating tags ({reason})",
            progress=f"Step {len(completed) + 1}",
            reasoning_type=ReasoningType.CONTEXTUAL,
            confidence=0.7,
            self_check=SelfCheck(
                is_action_valid=True,
                potential_issues=["Using fallback"],
                alternative_action=Action.GENERATE_IMPROVEMENT.value,
            ),
            fallback_action=Action.GENERATE_IMPROVEMENT,
        )

    if Action.GENERATE_IMPROVEMENT.value not in completed:
        return RouterDecision(
            next_action=Action.GENERATE_IMPROVEMENT,
            reasoning=f"Fallback: Generating mandatory improved prompt ({reason})",
            progress=f"Step {len(completed) + 1}",
            reasoning_type=ReasoningType.ANALYTICAL,
            confidence=1.0,
            self_check=SelfCheck(is_action_valid=True, alternative_action=Action.DONE.value),
            fallback_action=Action.DONE,
        )

    return RouterDecision(
        next_action=Action.DONE,
        reasoning=f"Fallback: All required actions completed including improvement ({reason})",
        reasoning_type=ReasoningType.SEQUENTIAL,
        confidence=1.0,
        self_check=SelfCheck(is_action_valid=True),
        fallback_action=Action.DONE,
    )


def describe_failure(error: BaseException) -> str:
    """Fallback reason for a failed router call; keeps the 429 marker visible."""
    detail = safe_error_detail(error)
    if error_status(error) == RATE_LIMIT_STATUS and "429" not in detail:
        return f"HTTP 429: {detail}"
    return detail


def _substitute(decision: RouterDecision, action: Action, prefix: str) -> RouterDecision:
    # the replacement action never inherits the proposed action's extraction payload
    return decision.model_copy(
        update={
            "next_action": action,
            "reasoning": f"{prefix}{decision.reasoning}",
            "extracted_data": None,
        }
    )


def apply_guards(decision: RouterDecision, completed_actions: Sequence[Union[str, Action]]) -> RouterDecision:
    completed = _completed_names(completed_actions)
    action = decision.next_action
    fallback = decision.fallback_action

    if action.value in completed:
        logger.warning("[ROUTER] model proposed completed action", extra={"action": action.value})
        counter("router_guard_total", labels={"guard": "duplicate"})
        if fallback is not None and fallback.value not in completed:
            decision = _substitute(decision, fallback, DUPLICATE_PREFIX)
        else:
            return fallback_decision(completed, "Suggested action already completed")
    elif decision.confidence is not None and decision.confidence < CONFIDENCE_THRESHOLD:
        logger.warning(
            "[ROUTER] low confidence decision",
            extra={"action": action.value, "confidence": decision.confidence},
        )
        issues = decision.self_check.potential_issues if decision.self_check else []
        if issues and fallback is not None and fallback.value not in completed:
            counter("router_guard_total", labels={"guard": "confidence"})
            decision = _substitute(decision, fallback, LOW_CONFIDENCE_PREFIX)

    return _enforce_order(decision, completed)


def _enforce_order(decision: RouterDecision, completed: List[str]) -> RouterDecision:
    action = decision.next_action
    if not completed and action is not Action.VALIDATE:
        counter("router_guard_total", labels={"guard": "order"})
        return fallback_decision(completed, f"{action.value} proposed before validate")
    if action is Action.DONE and Action.GENERATE_IMPROVEMENT.value not in completed:
        counter("router_guard_total", labels={"guard": "order"})
        return fallback_decision(completed, "done proposed before generateImprovement")
    return decision


class Router:
    def __init__(self, client: ResilientLLMClient) -> None:
        self.client = client

    async def route(
        self,
        prompt: str,
        completed_actions: Optional[Sequence[Union[str, Action]]] = None,
    ) -> RouterDecision:
        completed = _completed_names(completed_actions or [])
        router_prompt = build_router_prompt(prompt, completed)

        try:
            raw = await self.client.send(router_prompt, label="router")
            decision = parse_router_decision(raw)
        except CircuitBreakerOpenError:
            logger.error("[ROUTER] circuit breaker open, propagating")
            raise
        except Exception as exc:
            logger.warning("[ROUTER] router call failed", extra={"detail": safe_error_detail(exc)})
            return fallback_decision(completed, describe_failure(exc))

        guarded = apply_guards(decision, completed)
        logger.info(
            "[ROUTER] decision",
            extra={
                "action": guarded.next_action.value,
                "confidence": guarded.confidence,
                "reasoning_type": guarded.reasoning_type.value if guarded.reasoning_type else None,
            },
        )
        return guarded


__all__ = [
    "Router",
    "fallback_decision",
    "apply_guards",
    "describe_failure",
    "DUPLICATE_PREFIX",
    "LOW_CONFIDENCE_PREFIX",
]
