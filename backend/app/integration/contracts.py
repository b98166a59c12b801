"""Contracts for the collaborators the turn pipeline calls out to.

Model invocation, quota ledger, persistence, search augmentation and analytics
live outside the core. The orchestrator depends only on these protocols; the
in-memory implementations in ``db.store``, ``plans.quota``,
``research.augment`` and ``observability.analytics`` satisfy them for local
runs and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from backend.app.context.messages import ChatMessage
from backend.app.plans.policy import Plan
from backend.app.reliability.errors import ReasonCode


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    is_pinned: bool = False
    is_archived: bool = False
    message_count: int = 0
    total_tokens: int = 0
    last_message_at: Optional[datetime] = None


@dataclass(frozen=True)
class Turn:
    id: str
    conversation_id: str
    user_id: str
    role: str
    text: str
    created_at: datetime
    seq: int = 0
    branch_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    tokens: int = 0
    model: Optional[str] = None
    cached: bool = False

    def as_message(self) -> ChatMessage:
        return ChatMessage(role=self.role, content=self.text, message_id=self.id)


@dataclass(frozen=True)
class BranchRecord:
    id: str
    conversation_id: str
    user_id: str
    parent_message_id: str
    branch_number: int
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ModelUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ModelResult:
    text: str
    usage: ModelUsage = field(default_factory=ModelUsage)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[ReasonCode] = None
    remaining: int = 0


@dataclass(frozen=True)
class SearchSource:
    title: str
    url: str
    snippet: str = ""


@dataclass
class SearchResult:
    fact: str
    sources: List[SearchSource] = field(default_factory=list)
    cost: float = 0.0


@dataclass
class TurnEvent:
    name: str
    user_id: str
    conversation_id: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ModelInvoker(Protocol):
    async def invoke(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        temperature: float,
        user_context: Mapping[str, Any],
    ) -> ModelResult:
        """Raise TransientProviderError for retryable failures, FatalProviderError otherwise."""
        ...


@runtime_checkable
class QuotaLedger(Protocol):
    async def can_afford(self, user_id: str, estimated_units: int, *, plan: Optional[Plan] = None) -> QuotaDecision:
        ...

    async def deduct(self, user_id: str, units: int, *, plan: Optional[Plan] = None) -> int:
        ...


@runtime_checkable
class ConversationStore(Protocol):
    async def find_session(self, session_id: str, user_id: str) -> Optional[Conversation]:
        ...

    async def create_session(self, user_id: str, title: str) -> Conversation:
        ...

    async def create_turn(
        self,
        conversation_id: str,
        user_id: str,
        role: str,
        text: str,
        *,
        branch_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
        tokens: int = 0,
        model: Optional[str] = None,
        cached: bool = False,
    ) -> Turn:
        ...

    async def get_turn(self, turn_id: str) -> Optional[Turn]:
        ...

    async def list_turns(
        self,
        conversation_id: str,
        *,
        branch_id: Optional[str] = None,
        all_branches: bool = False,
        limit: Optional[int] = None,
    ) -> List[Turn]:
        """Oldest first. ``branch_id=None`` without ``all_branches`` means trunk turns only."""
        ...

    async def delete_turn(self, turn_id: str) -> bool:
        ...

    async def update_conversation_counters(
        self,
        conversation_id: str,
        *,
        messages_delta: int,
        tokens_delta: int,
        last_message_at: Optional[datetime] = None,
    ) -> None:
        ...

    async def create_branch(self, record: BranchRecord) -> BranchRecord:
        ...

    async def get_branch(self, conversation_id: str, branch_id: str) -> Optional[BranchRecord]:
        ...

    async def list_branches(self, conversation_id: str) -> List[BranchRecord]:
        ...

    async def list_branch_sessions(self) -> List[str]:
        """Ids of conversations that currently have at least one branch record."""
        ...

    async def delete_branch(self, conversation_id: str, branch_id: str) -> int:
        """Drop the branch record and its turns; return the number of turns removed."""
        ...


@runtime_checkable
class SearchAugmenter(Protocol):
    async def search(self, query: str, location_hint: Optional[str] = None) -> Optional[SearchResult]:
        ...


@runtime_checkable
class AnalyticsSink(Protocol):
    async def emit(self, event: TurnEvent) -> None:
        ...


__all__ = [
    "Conversation",
    "Turn",
    "BranchRecord",
    "ModelUsage",
    "ModelResult",
    "QuotaDecision",
    "SearchSource",
    "SearchResult",
    "TurnEvent",
    "ModelInvoker",
    "QuotaLedger",
    "ConversationStore",
    "SearchAugmenter",
    "AnalyticsSink",
    "utcnow",
]
