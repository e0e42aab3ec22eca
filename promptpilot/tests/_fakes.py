from __future__ import annotations

import json
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from promptpilot.app.orchestration import ActionExecutor, Orchestrator, Router
from promptpilot.app.providers.base import LLMProvider, LLMRequest, LLMResponse
from promptpilot.app.providers.client import ResilientLLMClient
from promptpilot.app.providers.errors import LLMProviderError
from promptpilot.app.reliability import CircuitBreaker, RetryPolicy
from promptpilot.app.storage import ContextStore, HistoryStore

Scripted = Union[str, BaseException, Callable[[LLMRequest], str]]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider(LLMProvider):
    """Deterministic provider: answers each call with the next scripted item."""

    name = "fake"

    def __init__(self, responses: Iterable[Scripted]):
        self._responses: List[Scripted] = list(responses)
        self.requests: List[LLMRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError("provider called more often than scripted")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        text = item(request) if callable(item) else item
        return LLMResponse(text=text)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def rate_limited() -> LLMProviderError:
    return LLMProviderError(
        "Rate limit exceeded (429). Please wait before making more requests.",
        provider="fake",
        status_code=429,
    )


def overloaded() -> LLMProviderError:
    return LLMProviderError("Service temporarily overloaded (503).", provider="fake", status_code=503)


def server_error() -> LLMProviderError:
    return LLMProviderError("API error: 500 - boom", provider="fake", status_code=500)


def decision(action: str, **fields: Any) -> str:
    payload: Dict[str, Any] = {
        "nextAction": action,
        "reasoning": fields.pop("reasoning", f"next: {action}"),
        "reasoningType": "sequential",
        "confidence": 0.9,
        "selfCheck": {"isActionValid": True, "potentialIssues": []},
    }
    payload.update(fields)
    return json.dumps(payload)


VALIDATION_JSON = json.dumps(
    {
        "explicit_reasoning": True,
        "structured_output": False,
        "tool_separation": False,
        "conversation_loop": True,
        "instructional_framing": False,
        "internal_self_checks": False,
        "reasoning_type_awareness": False,
        "fallbacks": False,
        "overall_clarity": "Clear ask, no output format.",
    }
)

IMPROVEMENT_JSON = json.dumps(
    {
        "improvedPrompt": "Explain step by step, then answer in a numbered list.",
        "improvements": ["Added reasoning instructions", "Added output format"],
        "reasoning": "Structure helps the model.",
        "contextUsed": [],
    }
)


def build_orchestrator(
    responses: Iterable[Scripted],
    *,
    breaker: Optional[CircuitBreaker] = None,
    max_iterations: int = 15,
    max_retries: int = 3,
) -> Tuple[Orchestrator, ScriptedProvider, ContextStore, HistoryStore, SleepRecorder]:
    provider = ScriptedProvider(responses)
    breaker = breaker or CircuitBreaker(clock=FakeClock())
    sleep = SleepRecorder()
    policy = RetryPolicy(breaker=breaker, max_retries=max_retries, rng=lambda: 0.5)
    client = ResilientLLMClient(provider, breaker=breaker, policy=policy, sleep=sleep)
    context_store = ContextStore()
    history_store = HistoryStore()
    orchestrator = Orchestrator(
        Router(client),
        ActionExecutor(client),
        breaker,
        context_store=context_store,
        history_store=history_store,
        max_iterations=max_iterations,
    )
    return orchestrator, provider, context_store, history_store, sleep
