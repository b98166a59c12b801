from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from backend.app.classifier.types import Language

# Instructional phrasing only; a caring reply may still say "don't harm yourself".
BLOCK_KEYWORDS = [
    "self-harm instruction",
    "how to commit suicide",
    "ways to commit suicide",
    "how to harm yourself",
    "ways to harm yourself",
]

SAFE_FALLBACK_TEXT = "I can't help with that one, but I'm happy to help with something else."
SUPPORTIVE_FALLBACK_TEXT = (
    "I'm really glad you reached out. You don't have to go through this alone, "
    "and talking to someone right now can help."
)

MAX_EMOJI = 3
MIN_RESPONSE_CHARS = 10

_AI_MENTION = re.compile(r"\b(as an ai|i am an ai|i'm an ai|chatgpt|gemini|claude|openai|google ai)\b", re.IGNORECASE)
_AI_DISCLAIMER = re.compile(r"^\s*as an ai( language model)?[^.!?\n]*[.!?]\s*", re.IGNORECASE)
_DEVANAGARI = re.compile(r"[ऀ-ॿ]")
_EMOJI = re.compile("[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F900-\U0001F9FF]")
_BLANK_RUN = re.compile(r"\n{3,}")


@dataclass
class SanitizedResponse:
    text: str
    issues: List[str] = field(default_factory=list)
    blocked: bool = False


def apply_safety(text: str | None) -> tuple[bool, str | None]:
    trimmed = (text or "").strip().lower()
    if any(keyword in trimmed for keyword in BLOCK_KEYWORDS):
        return False, "disallowed_content"
    return True, None


def refusal_text(support_resources: Optional[str] = None) -> str:
    if support_resources:
        return f"{SUPPORTIVE_FALLBACK_TEXT}\n\n{support_resources}"
    return SAFE_FALLBACK_TEXT


def check_response_quality(text: str, language: Language) -> List[str]:
    issues: List[str] = []
    if _AI_MENTION.search(text or ""):
        issues.append("AI_MENTION")
    if language == Language.MIX and _DEVANAGARI.search(text or ""):
        issues.append("DEVANAGARI")
    if len(_EMOJI.findall(text or "")) > MAX_EMOJI:
        issues.append("EXCESS_EMOJI")
    if len((text or "").strip()) < MIN_RESPONSE_CHARS:
        issues.append("TOO_SHORT")
    return issues


def _cap_emoji(text: str, limit: int) -> str:
    seen = 0

    def _keep(match: re.Match) -> str:
        nonlocal seen
        seen += 1
        return match.group(0) if seen <= limit else ""

    return _EMOJI.sub(_keep, text)


def sanitize_response(
    text: str | None,
    language: Language,
    *,
    support_resources: Optional[str] = None,
) -> SanitizedResponse:
    """Clean a model reply before it is persisted or cached.

    Quality issues are reported, and the cheap ones fixed in place: leading AI
    disclaimers, emoji beyond the cap and runs of blank lines. Escalation turns get
    the crisis resource line appended when the model left it out.
    """
    raw = (text or "").strip()
    allowed, _ = apply_safety(raw)
    if not allowed:
        return SanitizedResponse(text=refusal_text(support_resources), issues=["DISALLOWED_CONTENT"], blocked=True)

    issues = check_response_quality(raw, language)
    cleaned = _AI_DISCLAIMER.sub("", raw) if "AI_MENTION" in issues else raw
    if "EXCESS_EMOJI" in issues:
        cleaned = _cap_emoji(cleaned, MAX_EMOJI)
    cleaned = _BLANK_RUN.sub("\n\n", cleaned).strip() or raw

    if support_resources and support_resources not in cleaned:
        cleaned = f"{cleaned}\n\n{support_resources}"
    return SanitizedResponse(text=cleaned, issues=issues)


__all__ = [
    "BLOCK_KEYWORDS",
    "SAFE_FALLBACK_TEXT",
    "SUPPORTIVE_FALLBACK_TEXT",
    "SanitizedResponse",
    "apply_safety",
    "check_response_quality",
    "refusal_text",
    "sanitize_response",
]
