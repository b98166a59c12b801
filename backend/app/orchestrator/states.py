from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.plans.policy import Plan


class TurnState(str, Enum):
    CACHE_CHECK = "cache_check"
    QUOTA_CHECK = "quota_check"
    SESSION_RESOLVE = "session_resolve"
    BRANCH_RESOLVE = "branch_resolve"
    HISTORY_FETCH = "history_fetch"
    PERSONALIZATION_DETECT = "personalization_detect"
    CLASSIFY = "classify"
    HEALTH_ASSESS = "health_assess"
    SEARCH_AUGMENT = "search_augment"
    PROMPT_COMPILE = "prompt_compile"
    MODEL_INVOKE = "model_invoke"
    RESPONSE_SANITIZE = "response_sanitize"
    PERSIST = "persist"
    CACHE_STORE = "cache_store"
    USAGE_DEDUCT = "usage_deduct"
    ANALYTICS_EMIT = "analytics_emit"


class TurnStatus(str, Enum):
    DONE = "done"
    BLOCKED = "blocked"
    QUOTA_EXCEEDED = "quota_exceeded"
    SESSION_NOT_FOUND = "session_not_found"
    FAILED = "failed"


@dataclass
class TurnRequest:
    user_id: str
    message: str
    plan: Plan = Plan.STARTER
    session_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    branch_id: Optional[str] = None
    user_name: Optional[str] = None
    location: Optional[str] = None
    timezone_name: Optional[str] = None
    now: Optional[datetime] = None


@dataclass
class TurnUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    deducted: int = 0
    remaining: Optional[int] = None
    attempts: int = 0


@dataclass
class TurnOutcome:
    status: TurnStatus
    reason_code: Optional[str] = None
    message: Optional[str] = None
    reply: Optional[str] = None
    user_message_id: Optional[str] = None
    assistant_message_id: Optional[str] = None
    session_id: Optional[str] = None
    branch_id: Optional[str] = None
    branch_error: Optional[str] = None
    classification: Optional[Dict[str, Any]] = None
    health: Optional[Dict[str, Any]] = None
    cache_hit: bool = False
    cache_similarity: float = 0.0
    search_used: bool = False
    usage: TurnUsage = field(default_factory=TurnUsage)
    prompt: Optional[Dict[str, Any]] = None
    compression: Optional[Dict[str, Any]] = None
    latency_ms: int = 0
    trace: List[TurnState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == TurnStatus.DONE

    def visited(self, state: TurnState) -> bool:
        return state in self.trace


__all__ = ["TurnState", "TurnStatus", "TurnRequest", "TurnUsage", "TurnOutcome"]
