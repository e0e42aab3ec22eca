"""
Orchestrator: the sequential router/executor loop for one prompt.

Per iteration:
1. consult the circuit breaker, abort without a router call when it is open
2. ask the router for the next action
3. ``done`` ends the run; anything else is dispatched to the executor
4. record the step and notify the progress callback

Rate-limit failures abort the run with ``OrchestrationAbortedError`` carrying
the partial result. Nothing from an aborted run is persisted. Other action
failures are recorded on the step and the loop goes on. The loop is capped at
``max_iterations`` iterations.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from promptpilot.app.config import safe_error_detail
from promptpilot.app.observability import counter, event, histogram
from promptpilot.app.orchestration.actions import (
    Action,
    CONTEXT_KEYS,
    EXTRACTION_ACTIONS,
)
from promptpilot.app.orchestration.errors import OrchestrationAbortedError
from promptpilot.app.orchestration.executor import ActionExecutor
from promptpilot.app.orchestration.router import Router
from promptpilot.app.orchestration.schema import (
    ExtractedContext,
    ImprovementSuggestion,
    OrchestrationResult,
    OrchestrationStep,
    StepCallback,
    ValidationResult,
)
from promptpilot.app.providers.errors import CircuitBreakerOpenError, is_quota_error
from promptpilot.app.reliability.breaker import CircuitBreaker
from promptpilot.app.storage.history_store import HistoryStore, PromptHistoryEntry, RouterDecisionSummary

if TYPE_CHECKING:
    from promptpilot.app.storage.context_store import ContextStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 15


class Orchestrator:
    def __init__(
        self,
        router: Router,
        executor: ActionExecutor,
        breaker: CircuitBreaker,
        context_store: Optional[ContextStore] = None,
        history_store: Optional[HistoryStore] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.router = router
        self.executor = executor
        self.breaker = breaker
        self.context_store = context_store
        self.history_store = history_store
        self.max_iterations = max_iterations

    async def orchestrate(
        self,
        prompt: str,
        on_step_update: Optional[StepCallback] = None,
    ) -> OrchestrationResult:
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        result = OrchestrationResult()
        completed: List[str] = []
        fragments: Dict[str, Any] = {}
        finished = False

        logger.info("[ORCH] run started", extra={"run_id": run_id, "max_iterations": self.max_iterations})

        for iteration in range(1, self.max_iterations + 1):
            if self.breaker.is_open():
                cause = CircuitBreakerOpenError(self.breaker.get_remaining_cooldown())
                raise self._abort(run_id, result, cause) from cause

            try:
                decision = await self.router.route(prompt, completed)
            except CircuitBreakerOpenError as exc:
                raise self._abort(run_id, result, exc) from exc

            action = decision.next_action
            logger.info(
                "[ORCH] step",
                extra={"run_id": run_id, "iteration": iteration, "action": action.value},
            )

            if action is Action.DONE:
                self._append(result, OrchestrationStep(action=action.value, decision=decision), on_step_update)
                finished = True
                break

            pending = ExtractedContext(**fragments)
            try:
                step_result = await self.executor.execute(
                    action,
                    decision,
                    prompt,
                    context_summary=lambda: self._context_summary(pending),
                )
            except Exception as exc:
                detail = safe_error_detail(exc)
                completed.append(action.value)
                result.errors.append(f"{action.value} failed: {detail}")
                step = OrchestrationStep(action=action.value, decision=decision, error=detail)
                self._append(result, step, on_step_update)
                counter("orchestration_step_failed_total", labels={"action": action.value})
                if is_quota_error(exc):
                    raise self._abort(run_id, result, exc) from exc
                logger.warning(
                    "[ORCH] action failed, continuing",
                    extra={"run_id": run_id, "action": action.value, "detail": detail},
                )
                continue

            if action is Action.VALIDATE and isinstance(step_result, ValidationResult):
                result.validation_result = step_result
            elif action is Action.GENERATE_IMPROVEMENT and isinstance(step_result, ImprovementSuggestion):
                result.improved_prompt = step_result
            elif action in EXTRACTION_ACTIONS:
                fragments[CONTEXT_KEYS[action]] = step_result

            completed.append(action.value)
            self._append(
                result,
                OrchestrationStep(action=action.value, decision=decision, result=step_result),
                on_step_update,
            )

        if not finished:
            logger.warning("[ORCH] iteration cap reached", extra={"run_id": run_id, "max_iterations": self.max_iterations})

        result.total_steps = len(result.steps)
        if fragments:
            result.extracted_context = ExtractedContext(**fragments)

        # file-backed stores write synchronously
        await asyncio.to_thread(self._persist, run_id, prompt, result)

        outcome = "done" if finished else "capped"
        counter("orchestration_completed_total", labels={"outcome": outcome})
        histogram("orchestration_duration_ms", (time.monotonic() - started) * 1000, labels={"outcome": outcome})
        event(
            "orchestration_finished",
            {"run_id": run_id, "outcome": outcome, "steps": result.total_steps, "errors": len(result.errors)},
        )
        return result

    def _append(
        self,
        result: OrchestrationResult,
        step: OrchestrationStep,
        on_step_update: Optional[StepCallback],
    ) -> None:
        result.steps.append(step)
        result.total_steps = len(result.steps)
        if on_step_update is not None:
            on_step_update(step)

    def _abort(self, run_id: str, result: OrchestrationResult, cause: BaseException) -> OrchestrationAbortedError:
        remaining = getattr(cause, "remaining_cooldown", None)
        if remaining is None:
            remaining = self.breaker.get_remaining_cooldown()
        result.total_steps = len(result.steps)
        logger.error(
            "[ORCH] run aborted on rate limit",
            extra={"run_id": run_id, "steps": result.total_steps, "remaining_cooldown": remaining},
        )
        counter("orchestration_completed_total", labels={"outcome": "aborted"})
        message = (
            f"Rate limit protection active. Please wait {remaining} seconds before trying again."
            if remaining
            else "Rate limit exceeded. Please wait before making more requests."
        )
        result.errors.append(f"Orchestration failed: {message}")
        return OrchestrationAbortedError(message, result=result, remaining_cooldown=remaining)

    def _context_summary(self, pending: ExtractedContext) -> str:
        if self.context_store is None:
            return ""
        return self.context_store.get_context_summary(pending=pending)

    def _persist(self, run_id: str, prompt: str, result: OrchestrationResult) -> None:
        if self.context_store is not None and result.extracted_context is not None:
            try:
                self.context_store.update_user_context(result.extracted_context, prompt, result.validation_result)
            except (OSError, ValueError) as exc:
                logger.error(
                    "[ORCH] context update failed",
                    extra={"run_id": run_id, "detail": safe_error_detail(exc)},
                )

        if self.history_store is None:
            return
        entry = PromptHistoryEntry(
            original_prompt=prompt,
            validation_result=result.validation_result.model_dump() if result.validation_result else None,
            extracted_context=(
                result.extracted_context.model_dump(exclude_none=True) if result.extracted_context else None
            ),
            improved_prompt=result.improved_prompt.model_dump() if result.improved_prompt else None,
            router_decisions=[
                RouterDecisionSummary(action=step.action, reasoning=step.decision.reasoning)
                for step in result.steps
            ],
            tags=(result.extracted_context.tags or []) if result.extracted_context else [],
        )
        try:
            self.history_store.save_prompt_to_history(entry)
        except (OSError, ValueError) as exc:
            logger.error(
                "[ORCH] history save failed",
                extra={"run_id": run_id, "detail": safe_error_detail(exc)},
            )


def get_orchestration_status(result: OrchestrationResult) -> str:
    """One-line outcome summary for a finished or partial result."""
    completed = [s for s in result.steps if not s.error and s.action != Action.DONE.value]
    if result.errors:
        return f"Completed {len(completed)} of {result.total_steps} steps with errors"
    if not completed:
        return "No actions were completed"
    return f"Successfully completed {len(completed)} steps"


__all__ = ["Orchestrator", "get_orchestration_status", "DEFAULT_MAX_ITERATIONS"]
