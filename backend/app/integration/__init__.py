"""Collaborator contracts consumed by the turn pipeline."""

from backend.app.integration.contracts import (
    AnalyticsSink,
    BranchRecord,
    Conversation,
    ConversationStore,
    ModelInvoker,
    ModelResult,
    ModelUsage,
    QuotaDecision,
    QuotaLedger,
    SearchAugmenter,
    SearchResult,
    SearchSource,
    Turn,
    TurnEvent,
    utcnow,
)

__all__ = [
    "AnalyticsSink",
    "BranchRecord",
    "Conversation",
    "ConversationStore",
    "ModelInvoker",
    "ModelResult",
    "ModelUsage",
    "QuotaDecision",
    "QuotaLedger",
    "SearchAugmenter",
    "SearchResult",
    "SearchSource",
    "Turn",
    "TurnEvent",
    "utcnow",
]
