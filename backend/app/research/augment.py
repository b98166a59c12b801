"""Search augmentation helpers.

Decides whether a turn needs fresh facts, skips follow-ups whose context is
already in history, and turns a search result into a compact prompt section.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from backend.app.context.messages import ChatMessage
from backend.app.integration.contracts import SearchResult

logger = logging.getLogger(__name__)

MAX_SOURCES = 3
FOLLOW_UP_MAX_WORDS = 8
FOLLOW_UP_MIN_PRIOR_TURNS = 2

_SEARCH_TRIGGERS = re.compile(
    r"\b(today|tonight|tomorrow|yesterday|right now|currently|this week|aaj|abhi|kal ka|"
    r"live score|score|match result|who won|latest|news|headlines|breaking|khabar|"
    r"price of|price|rate|bhav|stock price|share price|gold rate|petrol|exchange rate|"
    r"weather|mausam|temperature|forecast|baarish)\b",
    re.IGNORECASE,
)

_CONTINUATION = re.compile(
    r"\b(it|its|that|this|those|these|they|them|he|she|him|her|uska|iska|uski|iski|woh|wo|ye|yeh|"
    r"and|also|more|then|what about|aur|phir|bhi|usme|isme)\b",
    re.IGNORECASE,
)


def needs_search(message: str) -> bool:
    return bool(_SEARCH_TRIGGERS.search(message or ""))


def is_follow_up(message: str, prior_turns: Sequence[ChatMessage]) -> bool:
    """Short message with pronoun or continuation markers in a conversation that already has context."""
    words = (message or "").split()
    if not words or len(words) > FOLLOW_UP_MAX_WORDS:
        return False
    if len(prior_turns) < FOLLOW_UP_MIN_PRIOR_TURNS:
        return False
    return bool(_CONTINUATION.search(message))


def format_search_facts(result: Optional[SearchResult]) -> Optional[str]:
    if result is None or not (result.fact or "").strip():
        return None
    lines = [f"FACTS (from web search): {result.fact.strip()}"]
    for idx, source in enumerate(result.sources[:MAX_SOURCES], start=1):
        lines.append(f"[{idx}] {source.title} - {source.url}")
    if result.sources:
        lines.append("Cite sources as [n] when using these facts. Do not invent sources.")
    return "\n".join(lines)


class NullSearchAugmenter:
    """Augmenter used when no search backend is configured."""

    async def search(self, query: str, location_hint: Optional[str] = None) -> Optional[SearchResult]:
        return None


__all__ = [
    "NullSearchAugmenter",
    "format_search_facts",
    "is_follow_up",
    "needs_search",
]
