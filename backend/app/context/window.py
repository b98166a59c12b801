"""History compression ahead of the model call.

Each plan has a token limit and a strategy. History already under the limit,
or too short to be worth trimming, passes through untouched.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from backend.app.context.messages import ChatMessage
from backend.app.plans.policy import CompressionStrategy, Plan, get_plan_limits
from backend.app.plans.tokens import estimate_message_tokens

logger = logging.getLogger(__name__)

MIN_MESSAGES = 3
KEEP_RECENT = 5
SUMMARY_MIN_OLDER = 10

_STOP_WORDS = frozenset(
    """
    the a an is are was were be been being have has had do does did will would could should may might must
    shall can need to of in for on with at by from as into through during before after above below between
    under again further then once here there when where why how all each few more most other some such no
    nor not only own same so than too very just and but if or because until while this that these those i
    me my myself we our ours you your yours he him his she her hers it its they them their what which who
    whom please thanks thank yes okay ok sure right well also like want know think make get use try
    hai kya nahi aur mein bhi karo karna
    """.split()
)
_TOPIC_WORD = re.compile(r"\b[a-z]{3,}\b")
_GOAL_PATTERNS = (
    (re.compile(r"(?:help me|want to|need to|trying to)\s+(.+)", re.IGNORECASE), ""),
    (re.compile(r"(?:how (?:do i|can i|to))\s+(.+)", re.IGNORECASE), "Learn how to "),
    (re.compile(r"(?:create|build|make|implement)\s+(.+)", re.IGNORECASE), "Create "),
    (re.compile(r"(?:fix|solve|resolve|debug)\s+(.+)", re.IGNORECASE), "Fix "),
    (re.compile(r"(?:explain|understand|what is)\s+(.+)", re.IGNORECASE), "Understand "),
)


@dataclass
class CompressionResult:
    messages: List[ChatMessage]
    original_tokens: int
    compressed_tokens: int
    strategy: Optional[CompressionStrategy]
    messages_removed: int = 0
    summary: Optional[str] = None

    @property
    def compression_ratio(self) -> float:
        if not self.original_tokens:
            return 1.0
        return round(self.compressed_tokens / self.original_tokens, 4)

    @property
    def compressed(self) -> bool:
        return self.messages_removed > 0 or self.summary is not None

    def summary_fields(self) -> dict:
        return {
            "strategy": self.strategy.value if self.strategy else None,
            "original_tokens": self.original_tokens,
            "compressed_tokens": self.compressed_tokens,
            "messages_removed": self.messages_removed,
            "ratio": self.compression_ratio,
        }


def estimate_history_tokens(messages: Sequence[ChatMessage]) -> int:
    return sum(estimate_message_tokens(m.role, m.content) for m in messages)


def message_priority(message: ChatMessage, index: int, total: int) -> float:
    score = (index / total) * 30 if total else 0.0
    if "?" in message.content:
        score += 20
    if "`" in message.content:
        score += 15
    if message.important:
        score += 25
    if message.role == "user":
        score += 5
    if len(message.content) > 200:
        score += 10
    return score


def _shorten(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _pick_by_priority(messages: Sequence[ChatMessage], allowance: int) -> List[ChatMessage]:
    ranked = sorted(
        range(len(messages)),
        key=lambda i: message_priority(messages[i], i, len(messages)),
        reverse=True,
    )
    chosen: List[int] = []
    used = 0
    for i in ranked:
        cost = estimate_message_tokens(messages[i].role, messages[i].content)
        if used + cost <= allowance:
            chosen.append(i)
            used += cost
    return [messages[i] for i in sorted(chosen)]


def summarize(messages: Sequence[ChatMessage]) -> str:
    """Rule-based digest of older turns: goal, topics and open questions."""
    parts: List[str] = []

    goal: Optional[str] = None
    for msg in [m for m in messages if m.role == "user"][:3]:
        for pattern, prefix in _GOAL_PATTERNS:
            found = pattern.search(msg.content)
            if found:
                goal = prefix + _shorten(found.group(1), 60)
                break
        if goal:
            break
    if goal:
        parts.append(f"User's goal: {goal}")

    words = _TOPIC_WORD.findall(" ".join(m.content for m in messages).lower())
    topics = [w for w, _ in Counter(w for w in words if w not in _STOP_WORDS).most_common(5)]
    if topics:
        parts.append("Topics discussed: " + ", ".join(topics))

    questions = [
        "User asked: " + _shorten(m.content, 80)
        for m in messages
        if m.role == "user" and "?" in m.content and len(m.content) > 10
    ]
    if questions:
        parts.append("Key points:\n" + "\n".join(f"- {q}" for q in questions[:4]))

    return "\n".join(parts) or "Previous conversation context available."


class ContextWindowManager:
    def __init__(self, *, min_messages: int = MIN_MESSAGES, keep_recent: int = KEEP_RECENT) -> None:
        self.min_messages = min_messages
        self.keep_recent = keep_recent

    def compress(
        self,
        messages: Sequence[ChatMessage],
        plan: Plan,
        *,
        max_tokens: Optional[int] = None,
        strategy: Optional[CompressionStrategy] = None,
    ) -> CompressionResult:
        limits = get_plan_limits(plan)
        budget = max_tokens or limits.context_token_limit
        history = list(messages)
        original = estimate_history_tokens(history)

        if len(history) < self.min_messages or original <= budget:
            return CompressionResult(history, original, original, None)

        chosen = strategy or limits.compression_strategy
        summary: Optional[str] = None
        if chosen == CompressionStrategy.SELECTIVE:
            kept = self._selective(history, budget)
        elif chosen == CompressionStrategy.SLIDING_WINDOW:
            kept = self._sliding_window(history, budget)
        elif chosen == CompressionStrategy.SMART_SUMMARY:
            kept, summary = self._smart_summary(history, budget)
        else:
            kept = self._truncate(history, budget)

        result = CompressionResult(
            messages=kept,
            original_tokens=original,
            compressed_tokens=estimate_history_tokens(kept),
            strategy=chosen,
            messages_removed=max(0, len(history) - len(kept)),
            summary=summary,
        )
        logger.info("[Context] compressed history", extra=result.summary_fields())
        return result

    def _truncate(self, messages: List[ChatMessage], budget: int) -> List[ChatMessage]:
        kept: List[ChatMessage] = []
        used = 0
        for msg in reversed(messages):
            cost = estimate_message_tokens(msg.role, msg.content)
            if used + cost > budget and len(kept) >= self.min_messages:
                break
            kept.insert(0, msg)
            used += cost
        return kept

    def _selective(self, messages: List[ChatMessage], budget: int) -> List[ChatMessage]:
        recent = messages[-self.keep_recent:]
        older = messages[: -self.keep_recent]
        allowance = budget - estimate_history_tokens(recent)
        # Priority is scored over the whole history so recency weighs in.
        ranked = sorted(
            range(len(older)),
            key=lambda i: message_priority(older[i], i, len(messages)),
            reverse=True,
        )
        picked: List[int] = []
        for i in ranked:
            cost = estimate_message_tokens(older[i].role, older[i].content)
            if cost <= allowance:
                picked.append(i)
                allowance -= cost
        return [older[i] for i in sorted(picked)] + recent

    def _sliding_window(self, messages: List[ChatMessage], budget: int) -> List[ChatMessage]:
        system = [m for m in messages if m.role == "system"]
        rest = [m for m in messages if m.role != "system"]
        recent = rest[-self.keep_recent:]
        older = rest[: -self.keep_recent]
        allowance = budget - estimate_history_tokens(system) - estimate_history_tokens(recent)
        return system + _pick_by_priority(older, max(0, allowance)) + recent

    def _smart_summary(self, messages: List[ChatMessage], budget: int) -> tuple[List[ChatMessage], Optional[str]]:
        system = [m for m in messages if m.role == "system"]
        rest = [m for m in messages if m.role != "system"]
        recent = rest[-self.keep_recent:]
        older = rest[: -self.keep_recent]
        if len(older) < SUMMARY_MIN_OLDER:
            return self._sliding_window(messages, budget), None

        summary = summarize(older)
        digest = ChatMessage(role="system", content=f"[Previous conversation summary]\n{summary}", important=True)
        result = system + [digest] + recent
        if estimate_history_tokens(result) > budget:
            result = self._selective(result, budget)
        return result, summary


__all__ = [
    "KEEP_RECENT",
    "MIN_MESSAGES",
    "CompressionResult",
    "ContextWindowManager",
    "estimate_history_tokens",
    "message_priority",
    "summarize",
]
