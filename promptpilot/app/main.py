from __future__ import annotations

import functools
import logging
import time
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from promptpilot.app.config import get_settings, safe_error_detail, validate_for_env
from promptpilot.app.middleware.request_id import RequestIdMiddleware, get_request_id
from promptpilot.app.observability import counter
from promptpilot.app.orchestration import (
    ActionExecutor,
    OrchestrationAbortedError,
    OrchestrationStep,
    Orchestrator,
    Router,
    get_action_display_name,
    get_orchestration_status,
)
from promptpilot.app.providers import ProviderMisconfiguredError, create_provider
from promptpilot.app.providers.client import build_client
from promptpilot.app.reliability import CircuitBreaker
from promptpilot.app.storage import ContextStore, HistoryStore

_settings = get_settings()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        }
    },
    "root": {
        "level": (_settings.log_level or "INFO").upper(),
        "handlers": ["console"],
    },
}


dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

APP_VERSION = "0.3.0"
_start_time = time.monotonic()

app = FastAPI(title="PromptPilot")
_settings_summary = validate_for_env(_settings)
logger.info(
    "[CFG] loaded",
    extra={
        "env": _settings_summary.get("env"),
        "provider": _settings_summary.get("llm_provider"),
        "model": _settings_summary.get("llm_model"),
        "key_set": _settings_summary.get("llm_api_key_set"),
        "issues": _settings_summary.get("issues"),
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


class AnalyzeRequest(BaseModel):
    prompt: str


@functools.lru_cache(maxsize=1)
def get_breaker() -> CircuitBreaker:
    # one breaker per process: every request shares the provider quota
    return CircuitBreaker(
        max_retries=_settings.breaker_max_retries,
        reset_timeout_seconds=_settings.breaker_reset_timeout_seconds,
    )


@functools.lru_cache(maxsize=1)
def get_context_store() -> ContextStore:
    return ContextStore(Path(_settings.data_dir) / "user_context.json")


@functools.lru_cache(maxsize=1)
def get_history_store() -> HistoryStore:
    return HistoryStore(
        Path(_settings.data_dir) / "prompt_history.json",
        max_entries=_settings.history_max_entries,
    )


def get_orchestrator(
    breaker: CircuitBreaker = Depends(get_breaker),
    context_store: ContextStore = Depends(get_context_store),
    history_store: HistoryStore = Depends(get_history_store),
) -> Orchestrator:
    client = build_client(create_provider(_settings), breaker, _settings)
    return Orchestrator(
        Router(client),
        ActionExecutor(client),
        breaker,
        context_store=context_store,
        history_store=history_store,
        max_iterations=_settings.orchestrator_max_iterations,
    )


def _error(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error_code": error_code, "message": message},
    )


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "version": APP_VERSION,
        "uptime_seconds": int(time.monotonic() - _start_time),
    }


@app.post("/api/analyze", response_model=None)
async def analyze(
    body: AnalyzeRequest,
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> Dict[str, Any] | JSONResponse:
    prompt = body.prompt.strip()
    if not prompt:
        return _error(400, "empty_prompt", "Prompt must not be empty")

    rid = get_request_id(request)

    def on_step(step: OrchestrationStep) -> None:
        logger.info(
            "[API] step",
            extra={"request_id": rid, "action": get_action_display_name(step.action), "failed": bool(step.error)},
        )

    try:
        result = await orchestrator.orchestrate(prompt, on_step_update=on_step)
    except OrchestrationAbortedError as exc:
        counter("api_analyze_total", labels={"outcome": "aborted"})
        retry_after = max(1, exc.remaining_cooldown)
        return JSONResponse(
            status_code=429,
            content={
                "ok": False,
                "error_code": "rate_limited",
                "message": str(exc),
                "remaining_cooldown": exc.remaining_cooldown,
                "status": get_orchestration_status(exc.result),
                "result": exc.result.to_dict(),
            },
            headers={"Retry-After": str(retry_after)},
        )

    counter("api_analyze_total", labels={"outcome": "ok"})
    return {"ok": True, "status": get_orchestration_status(result), "result": result.to_dict()}


@app.get("/api/history")
async def list_history(
    limit: Optional[int] = Query(None, ge=1),
    store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    return {"entries": [e.model_dump() for e in store.list_entries(limit)]}


@app.delete("/api/history")
async def clear_history(store: HistoryStore = Depends(get_history_store)) -> Dict[str, str]:
    store.clear()
    return {"status": "ok"}


@app.get("/api/history/search")
async def search_history(
    q: str = Query("", max_length=500),
    store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    return {"entries": [e.model_dump() for e in store.search(q)]}


@app.get("/api/history/stats")
async def history_stats(store: HistoryStore = Depends(get_history_store)) -> Dict[str, Any]:
    return store.stats()


@app.get("/api/history/tags")
async def history_tags(
    tag: Optional[str] = Query(None, max_length=100),
    store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any]:
    if tag:
        return {"tag": tag, "entries": [e.model_dump() for e in store.by_tag(tag)]}
    return {"tags": store.all_tags()}


@app.get("/api/history/{entry_id}", response_model=None)
async def get_history_entry(
    entry_id: str,
    store: HistoryStore = Depends(get_history_store),
) -> Dict[str, Any] | JSONResponse:
    entry = store.get_entry(entry_id)
    if entry is None:
        return _error(404, "not_found", "History entry not found")
    return entry.model_dump()


@app.delete("/api/history/{entry_id}", response_model=None)
async def delete_history_entry(
    entry_id: str,
    store: HistoryStore = Depends(get_history_store),
) -> Dict[str, str] | JSONResponse:
    if not store.delete_entry(entry_id):
        return _error(404, "not_found", "History entry not found")
    return {"status": "ok"}


@app.get("/api/context")
async def get_context(store: ContextStore = Depends(get_context_store)) -> Dict[str, Any]:
    return {
        "context": store.get_user_context().model_dump(),
        "summary": store.get_context_summary(),
    }


@app.delete("/api/context")
async def clear_context(store: ContextStore = Depends(get_context_store)) -> Dict[str, str]:
    store.clear_user_context()
    return {"status": "ok"}


@app.get("/api/breaker")
async def breaker_state(breaker: CircuitBreaker = Depends(get_breaker)) -> Dict[str, Any]:
    is_open = breaker.is_open()
    state = breaker.get_state()
    return {
        "is_open": is_open,
        "remaining_cooldown": breaker.get_remaining_cooldown(),
        "total_retries": state.total_retries,
        "failure_count": state.failure_count,
        "max_retries": breaker.max_retries,
    }


@app.post("/api/breaker/reset")
async def reset_breaker(breaker: CircuitBreaker = Depends(get_breaker)) -> Dict[str, str]:
    breaker.reset()
    return {"status": "ok"}


@app.exception_handler(ProviderMisconfiguredError)
async def handle_misconfigured(request: Request, exc: ProviderMisconfiguredError) -> JSONResponse:
    logger.error("[CFG] provider misconfigured", extra={"detail": safe_error_detail(exc)})
    return _error(503, "provider_misconfigured", str(exc))


@app.exception_handler(Exception)
async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:  # noqa: BLE001
    logger.exception("Unhandled error in request")
    return _error(500, "internal_error", "Internal server error")
