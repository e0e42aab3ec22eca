from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from promptpilot.app.main import app, get_breaker, get_context_store, get_history_store, get_orchestrator
from promptpilot.app.orchestration import ExtractedContext
from promptpilot.app.providers import ProviderMisconfiguredError
from promptpilot.app.reliability import CircuitBreaker
from promptpilot.app.storage import PromptHistoryEntry

from _fakes import IMPROVEMENT_JSON, VALIDATION_JSON, FakeClock, build_orchestrator, decision, rate_limited


client = TestClient(app)


@pytest.fixture
def wired():
    """Install in-memory stores and a fresh breaker; yields a setter for the orchestrator script."""
    breaker = CircuitBreaker(clock=FakeClock())
    state = {}

    def use_script(responses):
        orchestrator, provider, context_store, history_store, _ = build_orchestrator(responses, breaker=breaker)
        state.update(provider=provider, context_store=context_store, history_store=history_store)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        app.dependency_overrides[get_context_store] = lambda: context_store
        app.dependency_overrides[get_history_store] = lambda: history_store
        return state

    app.dependency_overrides[get_breaker] = lambda: breaker
    use_script([])
    state["breaker"] = breaker
    state["use_script"] = use_script
    yield state
    app.dependency_overrides.clear()


def _happy_script():
    return [
        decision("validate"),
        VALIDATION_JSON,
        decision("extractTags", extractedData={"tags": ["haiku"]}),
        decision("generateImprovement"),
        IMPROVEMENT_JSON,
        decision("done"),
    ]


def test_health_has_request_id():
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"
    assert res.headers.get("x-request-id")


def test_incoming_request_id_is_echoed():
    res = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert res.headers["x-request-id"] == "abc-123"


def test_unsafe_request_id_is_replaced():
    res = client.get("/health", headers={"X-Request-ID": "<script>"})
    assert res.headers["x-request-id"] != "<script>"


def test_analyze_rejects_empty_prompt(wired):
    res = client.post("/api/analyze", json={"prompt": "   "})
    assert res.status_code == 400
    assert res.json()["error_code"] == "empty_prompt"
    assert wired["provider"].calls == 0


def test_analyze_runs_the_loop(wired):
    wired["use_script"](_happy_script())
    res = client.post("/api/analyze", json={"prompt": "Write a haiku"})
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["status"] == "Successfully completed 3 steps"
    result = body["result"]
    assert [s["action"] for s in result["steps"]] == ["validate", "extractTags", "generateImprovement", "done"]
    assert result["total_steps"] == 4
    assert result["extracted_context"] == {"tags": ["haiku"]}
    assert result["improved_prompt"]["improved_prompt"].startswith("Explain")
    assert result["steps"][0]["decision"]["next_action"] == "validate"
    assert len(wired["history_store"].list_entries()) == 1


def test_analyze_rate_limit_returns_429_with_partial_result(wired):
    wired["use_script"](
        [
            decision("validate"),
            rate_limited(),
            rate_limited(),
            rate_limited(),
        ]
    )
    res = client.post("/api/analyze", json={"prompt": "Write a haiku"})
    assert res.status_code == 429
    assert res.headers["retry-after"] == "60"
    body = res.json()
    assert body["error_code"] == "rate_limited"
    assert body["remaining_cooldown"] == 60
    assert body["result"]["total_steps"] == 1
    assert body["result"]["steps"][0]["error"].startswith("Rate limit exceeded")
    assert wired["history_store"].list_entries() == []


def test_analyze_with_open_breaker_makes_no_call(wired):
    wired["breaker"].open()
    wired["use_script"]([decision("validate")])
    res = client.post("/api/analyze", json={"prompt": "Write a haiku"})
    assert res.status_code == 429
    assert res.json()["result"]["steps"] == []
    assert wired["provider"].calls == 0


def test_misconfigured_provider_is_503(wired):
    def broken():
        raise ProviderMisconfiguredError("LLM_API_KEY is required")

    app.dependency_overrides[get_orchestrator] = broken
    res = client.post("/api/analyze", json={"prompt": "hello"})
    assert res.status_code == 503
    assert res.json()["error_code"] == "provider_misconfigured"


def test_history_endpoints(wired):
    store = wired["history_store"]
    first = store.save_prompt_to_history(PromptHistoryEntry(original_prompt="summarize this report", tags=["summary"]))
    store.save_prompt_to_history(PromptHistoryEntry(original_prompt="write a haiku", tags=["poetry"]))

    listed = client.get("/api/history").json()["entries"]
    assert [e["original_prompt"] for e in listed] == ["write a haiku", "summarize this report"]
    assert len(client.get("/api/history", params={"limit": 1}).json()["entries"]) == 1

    found = client.get("/api/history/search", params={"q": "HAIKU"}).json()["entries"]
    assert [e["original_prompt"] for e in found] == ["write a haiku"]

    stats = client.get("/api/history/stats").json()
    assert stats["total_prompts"] == 2

    assert client.get("/api/history/tags").json() == {"tags": ["poetry", "summary"]}
    tagged = client.get("/api/history/tags", params={"tag": "poetry"}).json()["entries"]
    assert [e["original_prompt"] for e in tagged] == ["write a haiku"]

    assert client.get(f"/api/history/{first.id}").json()["original_prompt"] == "summarize this report"
    assert client.delete(f"/api/history/{first.id}").status_code == 200
    assert client.get(f"/api/history/{first.id}").status_code == 404
    assert client.delete(f"/api/history/{first.id}").status_code == 404

    assert client.delete("/api/history").status_code == 200
    assert client.get("/api/history").json()["entries"] == []


def test_context_endpoints(wired):
    wired["context_store"].update_user_context(
        ExtractedContext(professional_info={"jobTitle": "Data engineer", "techStack": ["Python"]}),
        "earlier prompt",
    )
    body = client.get("/api/context").json()
    assert body["context"]["professional_info"]["job_title"] == "Data engineer"
    assert "Role: Data engineer" in body["summary"]

    assert client.delete("/api/context").status_code == 200
    assert client.get("/api/context").json()["summary"] == "No context available yet"


def test_breaker_endpoints(wired):
    wired["breaker"].open()
    state = client.get("/api/breaker").json()
    assert state["is_open"] is True
    assert state["remaining_cooldown"] == 60

    assert client.post("/api/breaker/reset").status_code == 200
    assert client.get("/api/breaker").json()["is_open"] is False
