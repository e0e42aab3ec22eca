"""
End-to-end orchestration against a scripted provider.

Scripts list provider answers in call order: one router call per iteration, plus
one extra call for ``validate`` and one for ``generateImprovement``. Extraction
actions never add a call of their own.
"""

import asyncio

import pytest

from promptpilot.app.orchestration import (
    Action,
    ExtractedContext,
    OrchestrationAbortedError,
    get_orchestration_status,
)
from promptpilot.app.orchestration.schema import OrchestrationResult, OrchestrationStep, RouterDecision
from promptpilot.app.providers.errors import CircuitBreakerOpenError
from promptpilot.app.reliability import CircuitBreaker

from _fakes import (
    IMPROVEMENT_JSON,
    VALIDATION_JSON,
    FakeClock,
    build_orchestrator,
    decision,
    overloaded,
    rate_limited,
    server_error,
)

PROMPT = "Write a haiku about rain for my poetry newsletter"


def _run(orchestrator, prompt=PROMPT, on_step=None):
    return asyncio.run(orchestrator.orchestrate(prompt, on_step_update=on_step))


def _actions(result):
    return [step.action for step in result.steps]


def _happy_script():
    return [
        decision("validate"),
        VALIDATION_JSON,
        decision("extractIntent", extractedData={"primaryIntent": "write a poem", "intentType": "creative"}),
        decision("extractTags", extractedData=["poetry", "haiku"]),
        decision("extractTask", extractedData={"currentTask": "newsletter haiku"}),
        decision("generateImprovement"),
        IMPROVEMENT_JSON,
        decision("done"),
    ]


class TestHappyPath:
    def test_full_run(self):
        orchestrator, provider, _, _, _ = build_orchestrator(_happy_script())
        result = _run(orchestrator)

        assert _actions(result) == [
            "validate",
            "extractIntent",
            "extractTags",
            "extractTask",
            "generateImprovement",
            "done",
        ]
        assert result.total_steps == 6
        assert result.errors == []
        assert result.validation_result.explicit_reasoning is True
        assert result.improved_prompt.improved_prompt.startswith("Explain step by step")
        assert result.extracted_context.tags == ["poetry", "haiku"]
        assert result.extracted_context.intent["primaryIntent"] == "write a poem"
        assert provider.remaining == 0

    def test_extractions_cost_no_extra_call(self):
        orchestrator, provider, _, _, _ = build_orchestrator(_happy_script())
        _run(orchestrator)
        router_calls = 6
        assert provider.calls == router_calls + 2

    def test_no_action_runs_twice(self):
        orchestrator, _, _, _, _ = build_orchestrator(_happy_script())
        actions = _actions(_run(orchestrator))
        assert len(actions) == len(set(actions))

    def test_improvement_sees_fragments_of_this_run(self):
        orchestrator, provider, _, _, _ = build_orchestrator(_happy_script())
        _run(orchestrator)
        improve_request = provider.requests[6]
        assert "Current Task: newsletter haiku" in improve_request.prompt
        assert PROMPT in improve_request.prompt

    def test_improvement_sees_stored_profile(self):
        orchestrator, provider, context_store, _, _ = build_orchestrator(_happy_script())
        context_store.update_user_context(
            ExtractedContext(personal_info={"name": "Ada", "location": "Lisbon"}),
            "earlier prompt",
        )
        _run(orchestrator)
        assert "Name: Ada" in provider.requests[6].prompt

    def test_callback_sees_every_step_in_order(self):
        seen = []
        orchestrator, _, _, _, _ = build_orchestrator(_happy_script())
        result = _run(orchestrator, on_step=seen.append)
        assert seen == result.steps
        assert seen[-1].action == "done"

    def test_history_and_context_persisted(self):
        orchestrator, _, context_store, history_store, _ = build_orchestrator(_happy_script())
        _run(orchestrator)

        entries = history_store.list_entries()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.original_prompt == PROMPT
        assert entry.tags == ["poetry", "haiku"]
        assert [d.action for d in entry.router_decisions][0] == "validate"
        assert entry.improved_prompt["improved_prompt"].startswith("Explain")

        ctx = context_store.get_user_context()
        assert ctx.task_context.current_task == "newsletter haiku"
        assert ctx.intent.primary_intent == "write a poem"
        assert len(ctx.metadata) == 1
        assert ctx.metadata[0].prompt_type == "creative"
        assert ctx.metadata[0].tags == ["poetry", "haiku"]


class TestOrdering:
    def test_validate_forced_first(self):
        script = [
            decision("extractIntent", extractedData={"primaryIntent": "x"}),
            VALIDATION_JSON,
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, _, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result)[0] == "validate"
        assert result.steps[0].decision.reasoning.startswith("Fallback:")

    def test_early_done_is_redirected_to_improvement(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            decision("extractIntent", extractedData={"primaryIntent": "poem"}),
            decision("done"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, _, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result) == ["validate", "extractIntent", "generateImprovement", "done"]
        assert result.improved_prompt is not None

    def test_repeated_action_is_replaced(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            decision("validate", fallbackAction="extractTone", extractedData={"tone": "warm"}),
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, _, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result) == ["validate", "extractTone", "generateImprovement", "done"]
        assert result.steps[1].result == {}

    def test_unusable_router_output_uses_fallback_table(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            "sorry, I cannot answer in JSON",
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, _, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result) == ["validate", "extractIntent", "generateImprovement", "done"]
        assert result.steps[1].result == {}


class TestActionFailures:
    def test_non_rate_limit_failure_is_recorded_and_run_continues(self):
        script = [
            decision("validate"),
            server_error(),
            decision("extractIntent", extractedData={"primaryIntent": "poem"}),
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, history_store, _ = build_orchestrator(script)
        result = _run(orchestrator)

        assert _actions(result) == ["validate", "extractIntent", "generateImprovement", "done"]
        assert result.steps[0].error == "API error: 500 - boom"
        assert result.errors == ["validate failed: API error: 500 - boom"]
        assert result.validation_result is None
        assert result.improved_prompt is not None
        assert len(history_store.list_entries()) == 1

    def test_failed_action_is_not_retried_by_router(self):
        script = [
            decision("validate"),
            "not json",
            decision("validate", fallbackAction="generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, _, _, _, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result) == ["validate", "generateImprovement", "done"]
        assert result.errors == ["validate failed: LLM did not return valid JSON."]

    def test_error_text_mentioning_rate_limit_does_not_abort(self):
        bad_validation = '{"explicit_reasoning": true, "overall_clarity": ["Clear about the rate limit policy"]}'
        script = [
            decision("validate"),
            bad_validation,
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        breaker = CircuitBreaker(clock=FakeClock())
        orchestrator, _, _, history_store, _ = build_orchestrator(script, breaker=breaker)
        result = _run(orchestrator, prompt="Design a rate limiter")

        assert _actions(result) == ["validate", "generateImprovement", "done"]
        assert result.errors[0].startswith("validate failed:")
        assert len(result.errors) == 1
        assert result.improved_prompt is not None
        assert breaker.is_open() is False
        assert len(history_store.list_entries()) == 1

    def test_malformed_task_history_does_not_break_improvement(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            decision("extractTask", extractedData={"currentTask": "draft release notes", "taskHistory": "yesterday"}),
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, provider, context_store, _, _ = build_orchestrator(script)
        result = _run(orchestrator)

        assert result.errors == []
        assert result.improved_prompt is not None
        assert "Current Task: draft release notes" in provider.requests[4].prompt
        task = context_store.get_user_context().task_context
        assert task.current_task == "draft release notes"
        assert [item.task for item in task.task_history] == ["draft release notes"]

    def test_overload_is_retried_inside_the_action(self):
        script = [
            decision("validate"),
            overloaded(),
            VALIDATION_JSON,
            decision("generateImprovement"),
            IMPROVEMENT_JSON,
            decision("done"),
        ]
        orchestrator, provider, _, _, sleep = build_orchestrator(script)
        result = _run(orchestrator)
        assert result.errors == []
        assert result.validation_result is not None
        assert sleep.delays == [1.0]
        assert provider.remaining == 0


class TestRateLimitAbort:
    def _quota_script(self):
        return [
            decision("validate"),
            VALIDATION_JSON,
            decision("extractIntent", extractedData={"primaryIntent": "poem"}),
            decision("generateImprovement"),
            rate_limited(),
            rate_limited(),
            rate_limited(),
        ]

    def test_aborts_with_partial_result(self):
        orchestrator, provider, _, _, sleep = build_orchestrator(self._quota_script())
        with pytest.raises(OrchestrationAbortedError) as excinfo:
            _run(orchestrator)

        err = excinfo.value
        partial = err.result
        assert _actions(partial) == ["validate", "extractIntent", "generateImprovement"]
        assert partial.total_steps == 3
        assert partial.steps[-1].error.startswith("Rate limit exceeded (429)")
        assert partial.validation_result is not None
        assert partial.improved_prompt is None
        assert err.remaining_cooldown == 60
        assert partial.errors[-1].startswith("Orchestration failed: Rate limit protection active")
        assert err.cause is not None
        assert getattr(err.cause, "status_code", None) == 429
        assert sleep.delays == [2.0, 4.0]
        assert provider.remaining == 0

    def test_aborted_run_persists_nothing(self):
        orchestrator, _, context_store, history_store, _ = build_orchestrator(self._quota_script())
        with pytest.raises(OrchestrationAbortedError):
            _run(orchestrator)
        assert history_store.list_entries() == []
        assert context_store.get_user_context().metadata == []
        assert context_store.get_user_context().intent.primary_intent is None

    def test_open_breaker_aborts_before_any_call(self):
        breaker = CircuitBreaker(clock=FakeClock())
        breaker.open()
        orchestrator, provider, _, _, _ = build_orchestrator([decision("validate")], breaker=breaker)
        with pytest.raises(OrchestrationAbortedError) as excinfo:
            _run(orchestrator)
        assert provider.calls == 0
        assert excinfo.value.result.steps == []
        assert isinstance(excinfo.value.cause, CircuitBreakerOpenError)
        assert excinfo.value.remaining_cooldown == 60

    def test_tripped_breaker_blocks_the_next_run(self):
        breaker = CircuitBreaker(clock=FakeClock())
        script = self._quota_script() + [decision("validate")]
        orchestrator, provider, _, _, _ = build_orchestrator(script, breaker=breaker)
        with pytest.raises(OrchestrationAbortedError):
            _run(orchestrator)
        with pytest.raises(OrchestrationAbortedError):
            _run(orchestrator, prompt="another prompt")
        assert provider.remaining == 1

    def test_router_rate_limit_ends_run_with_done(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            rate_limited(),
            rate_limited(),
            rate_limited(),
        ]
        orchestrator, _, _, history_store, _ = build_orchestrator(script)
        result = _run(orchestrator)
        assert _actions(result) == ["validate", "done"]
        assert result.steps[-1].decision.reasoning.startswith("Stopping due to rate limit")
        assert len(history_store.list_entries()) == 1


class TestIterationCap:
    def test_stops_at_max_iterations(self):
        script = [
            decision("validate"),
            VALIDATION_JSON,
            decision("extractIntent", extractedData={"primaryIntent": "x"}),
            decision("extractTags", extractedData=["a"]),
        ]
        orchestrator, provider, _, history_store, _ = build_orchestrator(script, max_iterations=3)
        result = _run(orchestrator)
        assert result.total_steps == 3
        assert "done" not in _actions(result)
        assert provider.remaining == 0
        assert len(history_store.list_entries()) == 1


class TestStatus:
    def _step(self, action, error=None):
        return OrchestrationStep(action=action, decision=RouterDecision(next_action=Action(action)), error=error)

    def test_success(self):
        result = OrchestrationResult(steps=[self._step("validate"), self._step("done")], total_steps=2)
        assert get_orchestration_status(result) == "Successfully completed 1 steps"

    def test_with_errors(self):
        result = OrchestrationResult(
            steps=[self._step("validate", error="boom"), self._step("extractIntent")],
            errors=["validate failed: boom"],
            total_steps=2,
        )
        assert get_orchestration_status(result) == "Completed 1 of 2 steps with errors"

    def test_nothing_done(self):
        assert get_orchestration_status(OrchestrationResult()) == "No actions were completed"
