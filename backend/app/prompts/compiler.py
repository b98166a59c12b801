"""Instruction block compiler.

Builds the system prompt from classifier and health output plus a few identity
facts, then enforces the prompt budget with staged compression:

    stage 1  whitespace and newline normalization
    stage 2  strip decoration from flavor sections, then drop flavor sections
             lowest priority first
    stage 3  hard truncation at ``budget * 4`` characters, protected text first

Protected sections (identity, language, safety, health, core rules) are never
dropped. Flavor sections (tone, emotion hint, facts, formatting) go first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.app.classifier.types import (
    ClassificationResult,
    Complexity,
    Emotion,
    Intent,
    Language,
    SafetyLevel,
)
from backend.app.plans.tokens import clamp_text_to_token_limit, estimate_tokens_from_text
from backend.app.safety.health import HealthVerdict, health_directives

logger = logging.getLogger(__name__)

STAGE_NONE = 0
STAGE_WHITESPACE = 1
STAGE_AGGRESSIVE = 2
STAGE_TRUNCATED = 3

_INLINE_SPACE = re.compile(r"[ \t\f\v]+")
_EMPHASIS = re.compile(r"(\*\*|__|\*|`+|~~)")
_DECORATION = re.compile(r"[━─═•►▶✓✔✨|#>]+|\.{3,}|!{2,}|-{2,}")
_EMOJI = re.compile("[\U0001F300-\U0001FAFF☀-➿]")


@dataclass(frozen=True)
class IdentityFacts:
    assistant_name: str = "Sage"
    user_name: Optional[str] = None
    location: Optional[str] = None
    timezone_name: Optional[str] = None
    now: Optional[datetime] = None


@dataclass(frozen=True)
class PromptSection:
    name: str
    text: str
    protected: bool = False
    # Higher priority flavor survives longer under compression.
    priority: int = 0


@dataclass
class CompiledPrompt:
    text: str
    token_estimate: int
    budget: int
    compression_stage: int = STAGE_NONE
    truncated: bool = False
    dropped_sections: List[str] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)


def tone_trait(intent: Intent, emotion: Emotion, safety: SafetyLevel) -> str:
    if safety in (SafetyLevel.ESCALATE, SafetyLevel.SENSITIVE):
        return "caring, supportive"
    if emotion == Emotion.NEGATIVE:
        return "warm, supportive"
    if intent == Intent.EMOTIONAL:
        return "empathetic"
    if intent == Intent.TECHNICAL:
        return "precise"
    if intent == Intent.LEARNING:
        return "patient"
    if intent == Intent.CREATIVE:
        return "expressive"
    if intent == Intent.GREETING:
        return "friendly"
    return "helpful"


def language_rule(language: Language) -> str:
    if language == Language.EN:
        return "Use English only."
    return "Use Hinglish in Roman script (no Devanagari), matching the user's mix of Hindi and English."


def formatting_rule(intent: Intent, complexity: Complexity, *, structured: bool = False) -> str:
    if intent == Intent.GREETING or complexity == Complexity.SIMPLE:
        rule = "Brief, natural."
    elif intent in (Intent.LEARNING, Intent.TECHNICAL):
        rule = "Steps, **bold** keys, examples."
    elif intent == Intent.TASK:
        rule = "Direct, actionable."
    else:
        rule = "Clear, specific answers."
    if structured:
        rule += " Use short headings for long answers."
    return rule


def safety_hint(safety: SafetyLevel) -> str:
    if safety == SafetyLevel.ESCALATE:
        return (
            "CRITICAL: User shows distress. Be calm, caring and short (under 120 words). "
            "Encourage professional help and share the support contacts."
        )
    if safety == SafetyLevel.SENSITIVE:
        return "Sensitive topic: be empathetic and grounded."
    return ""


CORE_RULES = (
    "RULES:\n"
    "- You are not ChatGPT, Gemini, Claude or any other assistant; never claim to be one.\n"
    "- Never be repetitive.\n"
    "- Use emoji only while being expressive, at most 3.\n"
    "- No over-explaining unless the user asks."
)


def _local_time(identity: IdentityFacts) -> Optional[str]:
    if identity.now is None and not identity.timezone_name:
        return None
    tz = timezone.utc
    if identity.timezone_name:
        try:
            tz = ZoneInfo(identity.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.info("[Prompt] unknown timezone", extra={"timezone": identity.timezone_name})
    now = identity.now or datetime.now(tz)
    if now.tzinfo is not None:
        now = now.astimezone(tz)
    return now.strftime("%A %d %B %Y, %H:%M")


def build_sections(
    identity: IdentityFacts,
    classification: ClassificationResult,
    health: Optional[HealthVerdict] = None,
    *,
    search_facts: Optional[str] = None,
) -> List[PromptSection]:
    c = classification
    who = f"You are {identity.assistant_name}, a conversational assistant"
    if identity.user_name:
        who += f", talking to {identity.user_name}"
    sections = [
        PromptSection("identity", who + ".", protected=True),
        PromptSection("tone", f"Tone: {tone_trait(c.intent, c.emotion, c.safety_level)}.", priority=30),
        PromptSection("language", language_rule(c.language), protected=True),
    ]

    hint = safety_hint(c.safety_level)
    if hint:
        sections.append(PromptSection("safety", hint, protected=True))
    if c.emotion == Emotion.NEGATIVE:
        sections.append(PromptSection("emotion", "User seems stressed, respond gently.", priority=20))
    if health is not None:
        sections.append(PromptSection("health", "\n".join(health_directives(health)), protected=True))

    facts: List[str] = []
    local_time = _local_time(identity)
    if local_time:
        facts.append(f"Current time: {local_time}.")
    if identity.location:
        facts.append(f"User location: {identity.location}.")
    if facts:
        sections.append(PromptSection("facts", " ".join(facts), priority=40))
    if search_facts:
        sections.append(PromptSection("search", search_facts, priority=50))

    sections.append(PromptSection("rules", CORE_RULES, protected=True))
    if c.is_repetitive:
        sections.append(
            PromptSection("repetition", "The user repeated a message; answer from a fresh angle.", priority=25)
        )
    sections.append(
        PromptSection(
            "formatting",
            "QUALITY: Clear, specific, example-based output. "
            + formatting_rule(c.intent, c.complexity, structured=c.routing.requires_structure),
            priority=10,
        )
    )
    return sections


def _render(sections: List[PromptSection]) -> str:
    return "\n".join(s.text for s in sections if s.text)


def normalize_whitespace(text: str) -> str:
    lines = (_INLINE_SPACE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def strip_decoration(text: str) -> str:
    text = _EMPHASIS.sub("", text)
    text = _DECORATION.sub(" ", text)
    text = _EMOJI.sub("", text)
    return normalize_whitespace(text)


class PromptCompiler:
    def __init__(self, budget_tokens: int = 600) -> None:
        self.budget_tokens = max(1, budget_tokens)

    def compile(
        self,
        identity: IdentityFacts,
        classification: ClassificationResult,
        health: Optional[HealthVerdict] = None,
        *,
        search_facts: Optional[str] = None,
        budget_tokens: Optional[int] = None,
    ) -> CompiledPrompt:
        budget = max(1, budget_tokens or self.budget_tokens)
        sections = build_sections(identity, classification, health, search_facts=search_facts)
        names = [s.name for s in sections]

        text = _render(sections)
        if estimate_tokens_from_text(text) <= budget:
            return CompiledPrompt(text, estimate_tokens_from_text(text), budget, sections=names)

        sections = [replace(s, text=normalize_whitespace(s.text)) for s in sections]
        text = _render(sections)
        if estimate_tokens_from_text(text) <= budget:
            return CompiledPrompt(text, estimate_tokens_from_text(text), budget, STAGE_WHITESPACE, sections=names)

        sections = [s if s.protected else replace(s, text=strip_decoration(s.text)) for s in sections]
        dropped: List[str] = []
        flavor = sorted((s for s in sections if not s.protected), key=lambda s: s.priority)
        for victim in flavor:
            if estimate_tokens_from_text(_render(sections)) <= budget:
                break
            sections = [s for s in sections if s.name != victim.name]
            dropped.append(victim.name)
        text = _render(sections)
        if estimate_tokens_from_text(text) <= budget:
            return CompiledPrompt(
                text,
                estimate_tokens_from_text(text),
                budget,
                STAGE_AGGRESSIVE,
                dropped_sections=dropped,
                sections=[s.name for s in sections],
            )

        # Last resort: protected directives lead so the cut lands on whatever follows.
        ordered = [s for s in sections if s.protected] + [s for s in sections if not s.protected]
        text = clamp_text_to_token_limit(_render(ordered), budget)
        logger.warning(
            "[Prompt] hard truncation",
            extra={"budget": budget, "sections": [s.name for s in ordered]},
        )
        return CompiledPrompt(
            text,
            estimate_tokens_from_text(text),
            budget,
            STAGE_TRUNCATED,
            truncated=True,
            dropped_sections=dropped,
            sections=[s.name for s in ordered],
        )


__all__ = [
    "IdentityFacts",
    "PromptSection",
    "CompiledPrompt",
    "PromptCompiler",
    "CORE_RULES",
    "STAGE_NONE",
    "STAGE_WHITESPACE",
    "STAGE_AGGRESSIVE",
    "STAGE_TRUNCATED",
    "build_sections",
    "formatting_rule",
    "language_rule",
    "normalize_whitespace",
    "safety_hint",
    "strip_decoration",
    "tone_trait",
]
