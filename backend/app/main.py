from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from logging.config import dictConfig
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.branching import BranchManager, flatten
from backend.app.cache import SemanticCache
from backend.app.chat_contract import (
    BranchCreateRequest,
    BranchCreateResponse,
    BranchDeleteResponse,
    BranchTreeResponse,
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    UsageOut,
)
from backend.app.config import Settings, get_settings, validate_for_env
from backend.app.db import InMemoryConversationStore
from backend.app.orchestrator import Orchestrator, TurnOutcome, TurnRequest, TurnStatus
from backend.app.plans.quota import InMemoryQuotaLedger
from backend.app.providers import ProviderModelInvoker, create_provider
from backend.app.reliability.errors import OrchestrationError, ReasonCode, SessionNotFound, http_status_for

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
        "level": "INFO",
        "handlers": ["console"],
    },
}


dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

APP_VERSION = "2026.10.0"


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Wire the default in-process collaborators for a single-node deployment."""
    store = InMemoryConversationStore()
    provider = create_provider(settings)
    invoker = ProviderModelInvoker(provider, settings.model_name) if provider is not None else None
    if invoker is None:
        logger.warning("[CFG] no model provider configured, chat turns will fail with 503")
    return Orchestrator(
        store=store,
        quota=InMemoryQuotaLedger(),
        invoker=invoker,
        cache=SemanticCache.from_settings(settings),
        branches=BranchManager.from_settings(store, settings),
        settings=settings,
    )


def _error(status: str, reason_code: str, message: str, http_status: int, request: Request) -> JSONResponse:
    payload = ErrorResponse(status=status, reason_code=reason_code, message=message[:200])
    response = JSONResponse(status_code=http_status, content=payload.model_dump())
    rid = getattr(request.state, "request_id", None)
    if rid:
        response.headers["X-Request-Id"] = rid
    return response


def _chat_response(outcome: TurnOutcome) -> ChatResponse:
    return ChatResponse(
        status=outcome.status.value,
        reply=outcome.reply,
        session_id=outcome.session_id,
        user_message_id=outcome.user_message_id,
        assistant_message_id=outcome.assistant_message_id,
        branch_id=outcome.branch_id,
        branch_error=outcome.branch_error,
        cache_hit=outcome.cache_hit,
        cache_similarity=outcome.cache_similarity,
        classification=outcome.classification,
        health=outcome.health,
        usage=UsageOut(**asdict(outcome.usage)),
        prompt=outcome.prompt,
        compression=outcome.compression,
        trace=[state.value for state in outcome.trace],
    )


def create_app(orchestrator: Optional[Orchestrator] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (orchestrator.settings if orchestrator is not None else get_settings())
    summary = validate_for_env(settings)
    logger.info(
        "[CFG] loaded",
        extra={
            "env": summary.get("env"),
            "provider": summary.get("model_provider"),
            "model": summary.get("model_name"),
            "enabled": summary.get("model_calls_configured"),
            "issues": summary.get("issues"),
        },
    )
    orchestrator = orchestrator or build_orchestrator(settings)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        orchestrator.cache.start_sweeper()
        try:
            yield
        finally:
            await orchestrator.cache.stop_sweeper()
            await orchestrator.drain()

    app = FastAPI(title="Conversational Turn Orchestrator", version=APP_VERSION, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    header = settings.request_id_header

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = (request.headers.get(header) or "").strip() or str(uuid.uuid4())
        request.state.request_id = rid
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", rid)
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("[API] invalid request", extra={"errors": len(exc.errors())})
        return _error(
            TurnStatus.FAILED.value,
            ReasonCode.VALIDATION_ERROR.value,
            "The request is missing required fields or is malformed.",
            400,
            request,
        )

    @app.exception_handler(OrchestrationError)
    async def handle_orchestration_error(request: Request, exc: OrchestrationError) -> JSONResponse:
        status = TurnStatus.SESSION_NOT_FOUND if isinstance(exc, SessionNotFound) else TurnStatus.FAILED
        return _error(status.value, exc.reason_code.value, exc.public_message, exc.http_status, request)

    @app.exception_handler(Exception)
    async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error in request")
        return _error(
            TurnStatus.FAILED.value,
            ReasonCode.INTERNAL_ERROR.value,
            OrchestrationError.public_message,
            500,
            request,
        )

    @app.post("/api/chat", response_model=ChatResponse, responses={400: {"model": ErrorResponse}})
    async def chat(payload: ChatRequest, request: Request) -> ChatResponse | JSONResponse:
        outcome = await orchestrator.handle_turn(
            TurnRequest(
                user_id=payload.user_id,
                message=payload.message,
                plan=payload.plan,
                session_id=payload.session_id,
                parent_message_id=payload.parent_message_id,
                branch_id=payload.branch_id,
                user_name=payload.user_name,
                location=payload.location,
                timezone_name=payload.timezone,
            )
        )
        if outcome.status != TurnStatus.DONE:
            return _error(
                outcome.status.value,
                outcome.reason_code or ReasonCode.INTERNAL_ERROR.value,
                outcome.message or OrchestrationError.public_message,
                http_status_for(outcome.reason_code),
                request,
            )
        return _chat_response(outcome)

    @app.post("/api/sessions/{session_id}/branches", response_model=BranchCreateResponse)
    async def create_branch(session_id: str, payload: BranchCreateRequest) -> BranchCreateResponse | JSONResponse:
        if await orchestrator.store.find_session(session_id, payload.user_id) is None:
            raise SessionNotFound(session_id)
        result = await orchestrator.branches.create_branch(
            session_id, payload.parent_message_id, payload.user_id, plan=payload.plan
        )
        body = BranchCreateResponse(
            success=result.success,
            branch_id=result.branch_id,
            branch_number=result.branch_number,
            depth=result.depth,
            reason=result.reason.value if result.reason else None,
            message=result.message,
        )
        if not result.success:
            return JSONResponse(status_code=409, content=body.model_dump())
        return body

    @app.get("/api/sessions/{session_id}/branches", response_model=BranchTreeResponse)
    async def branch_tree(session_id: str, user_id: str) -> BranchTreeResponse:
        tree = await orchestrator.branches.get_branch_tree(session_id, user_id)
        stats = await orchestrator.branches.branch_stats(session_id)
        logger.info("[API] branch tree", extra={"session_id": session_id, "branches": len(flatten(tree))})
        return BranchTreeResponse(session_id=session_id, branches=[node.as_dict() for node in tree], stats=stats)

    @app.delete("/api/sessions/{session_id}/branches/{branch_id}", response_model=BranchDeleteResponse)
    async def delete_branch(session_id: str, branch_id: str, user_id: str) -> BranchDeleteResponse:
        removed = await orchestrator.branches.delete_branch(session_id, branch_id, user_id)
        return BranchDeleteResponse(branch_id=branch_id, turns_removed=removed)

    @app.get("/api/cache/stats")
    async def cache_stats() -> Dict[str, Any]:
        return asdict(orchestrator.cache.stats())

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": APP_VERSION,
            "uptime_seconds": int(time.monotonic() - started_at),
            "model_configured": orchestrator.invoker is not None,
        }

    return app


app = create_app()


__all__ = ["APP_VERSION", "LOGGING_CONFIG", "build_orchestrator", "create_app", "app"]
