from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator

from backend.app.plans.policy import Plan

MAX_USER_TEXT_CHARS = 8000
MAX_FAILURE_REASON_CHARS = 200


class ChatRequest(BaseModel):
    user_id: StrictStr = Field(..., min_length=1, max_length=128)
    message: StrictStr = Field(..., min_length=1, max_length=MAX_USER_TEXT_CHARS)
    plan: Plan = Plan.STARTER
    session_id: Optional[StrictStr] = None
    parent_message_id: Optional[StrictStr] = None
    branch_id: Optional[StrictStr] = None
    user_name: Optional[StrictStr] = Field(default=None, max_length=64)
    location: Optional[StrictStr] = Field(default=None, max_length=120)
    timezone: Optional[StrictStr] = Field(default=None, max_length=64)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _strip_message(cls, values: Any) -> Any:
        if isinstance(values, dict) and isinstance(values.get("message"), str):
            values = {**values, "message": values["message"].strip()}
        return values


class UsageOut(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    deducted: int = 0
    remaining: Optional[int] = None
    attempts: int = 0

    model_config = ConfigDict(extra="forbid")


class ChatResponse(BaseModel):
    status: StrictStr
    reply: Optional[StrictStr] = None
    session_id: Optional[StrictStr] = None
    user_message_id: Optional[StrictStr] = None
    assistant_message_id: Optional[StrictStr] = None
    branch_id: Optional[StrictStr] = None
    branch_error: Optional[StrictStr] = None
    cache_hit: bool = False
    cache_similarity: float = 0.0
    classification: Optional[Dict[str, Any]] = None
    health: Optional[Dict[str, Any]] = None
    usage: UsageOut = Field(default_factory=UsageOut)
    prompt: Optional[Dict[str, Any]] = None
    compression: Optional[Dict[str, Any]] = None
    trace: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _ensure_reply(self) -> "ChatResponse":
        if self.status == "done" and not (self.reply or "").strip():
            raise ValueError("reply required for completed turns")
        return self


class ErrorResponse(BaseModel):
    status: StrictStr
    reason_code: StrictStr
    message: StrictStr = Field(..., max_length=MAX_FAILURE_REASON_CHARS)

    model_config = ConfigDict(extra="forbid")


class BranchCreateRequest(BaseModel):
    user_id: StrictStr = Field(..., min_length=1, max_length=128)
    parent_message_id: StrictStr = Field(..., min_length=1)
    plan: Plan = Plan.STARTER

    model_config = ConfigDict(extra="forbid")


class BranchCreateResponse(BaseModel):
    success: bool
    branch_id: Optional[StrictStr] = None
    branch_number: Optional[int] = None
    depth: Optional[int] = None
    reason: Optional[StrictStr] = None
    message: Optional[StrictStr] = None

    model_config = ConfigDict(extra="forbid")


class BranchTreeResponse(BaseModel):
    session_id: StrictStr
    branches: List[Dict[str, Any]] = Field(default_factory=list)
    stats: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class BranchDeleteResponse(BaseModel):
    branch_id: StrictStr
    turns_removed: int

    model_config = ConfigDict(extra="forbid")


__all__ = [
    "MAX_USER_TEXT_CHARS",
    "BranchCreateRequest",
    "BranchCreateResponse",
    "BranchDeleteResponse",
    "BranchTreeResponse",
    "ChatRequest",
    "ChatResponse",
    "ErrorResponse",
    "UsageOut",
]
