"""Per-turn message classifier.

Pure and deterministic: message + recent history in, ``ClassificationResult`` out.
No I/O, no shared state, safe to call from any number of concurrent turns.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from backend.app.classifier.patterns import (
    COMPLEX_CONCEPTS,
    DETERMINISTIC_TOPICS,
    DEVANAGARI,
    EMOTION_RULES,
    HINGLISH_MARKERS,
    INTENT_RULES,
    SAFETY_RULES,
    SUPPORT_RESOURCES,
    VAGUE_REFERENCE,
    WORD_PATTERN,
)
from backend.app.classifier.types import (
    ClassificationResult,
    Complexity,
    Emotion,
    Intent,
    Language,
    RoutingHints,
    SafetyAction,
    SafetyLevel,
)
from backend.app.context.messages import ChatMessage

GENERIC_BLOCK_REASON = "This request falls outside what can be helped with."

_SAFETY_ACTIONS = {
    SafetyLevel.CLEAN: SafetyAction.ALLOW,
    SafetyLevel.SENSITIVE: SafetyAction.ALLOW_WITH_GUARDRAILS,
    SafetyLevel.HEALTH_QUERY: SafetyAction.ALLOW_WITH_GUARDRAILS,
    SafetyLevel.ESCALATE: SafetyAction.ESCALATE,
    SafetyLevel.DANGEROUS: SafetyAction.DENY,
}

CLARIFICATION_CONFIDENCE = 40
LOW_TEMPERATURE_RISK = 60
HINDI_RATIO = 0.5


@dataclass(frozen=True)
class SafetyAssessment:
    level: SafetyLevel
    action: SafetyAction
    matched: Tuple[str, ...] = ()


def word_count(text: str) -> int:
    return len(text.split())


def tokenize(text: str) -> List[str]:
    return WORD_PATTERN.findall((text or "").lower())


def assess_safety(message: str) -> SafetyAssessment:
    """Highest level on the safety lattice matched by any rule."""
    lower = (message or "").lower()
    matched = SAFETY_RULES.all_matches(lower)
    level = SafetyLevel.CLEAN
    for item in matched:
        if item.result.rank > level.rank:
            level = item.result
    return SafetyAssessment(level=level, action=_SAFETY_ACTIONS[level], matched=tuple(m.name for m in matched))


def detect_language(message: str) -> Language:
    words = tokenize(message)
    if not words:
        return Language.EN
    markers = sum(1 for w in words if w in HINGLISH_MARKERS or DEVANAGARI.search(w))
    ratio = markers / len(words)
    if ratio >= HINDI_RATIO:
        return Language.HI
    if markers > 0:
        return Language.MIX
    return Language.EN


def detect_intent(message: str) -> Tuple[Intent, Optional[Intent]]:
    lower = (message or "").strip().lower()
    intents = INTENT_RULES.results(lower)

    if Intent.TASK in intents and Intent.EMOTIONAL in intents:
        return Intent.TASK, Intent.EMOTIONAL
    if Intent.QUESTION in intents and Intent.TECHNICAL in intents:
        return Intent.TECHNICAL, Intent.QUESTION

    primary = intents[0] if intents else Intent.CASUAL
    secondary = intents[1] if len(intents) > 1 else None
    return primary, secondary


def detect_complexity(message: str, intent: Intent) -> Complexity:
    if intent == Intent.GREETING:
        return Complexity.SIMPLE
    lower = (message or "").lower()
    words = word_count(message)
    if any(concept in lower for concept in COMPLEX_CONCEPTS):
        return Complexity.MEDIUM if words <= 5 else Complexity.COMPLEX
    if words <= 4:
        return Complexity.SIMPLE
    if words <= 15:
        return Complexity.MEDIUM
    if intent in (Intent.TECHNICAL, Intent.LEARNING, Intent.CREATIVE):
        return Complexity.COMPLEX
    return Complexity.MEDIUM


def detect_emotion(message: str) -> Emotion:
    found = EMOTION_RULES.first_match((message or "").lower())
    return found.result if found else Emotion.NEUTRAL


def confidence_score(message: str, intent: Intent, complexity: Complexity) -> int:
    score = 70
    if intent == Intent.GREETING:
        score += 25
    if intent == Intent.TASK:
        score += 15
    if complexity == Complexity.SIMPLE:
        score += 15
    if complexity == Complexity.COMPLEX:
        score -= 10

    words = word_count(message)
    if 5 <= words <= 20:
        score += 10
    if words > 50:
        score -= 15
    if words <= 2 and intent != Intent.GREETING:
        score -= 20
    if VAGUE_REFERENCE.search(message or ""):
        score -= 15
    return min(100, max(0, score))


def risk_score(safety: SafetyLevel, intent: Intent, emotion: Emotion) -> int:
    if safety == SafetyLevel.DANGEROUS:
        return 100
    score = 10
    if safety == SafetyLevel.ESCALATE:
        score = 95
    elif safety == SafetyLevel.SENSITIVE:
        score += 40
    elif safety == SafetyLevel.HEALTH_QUERY:
        score += 30
    if intent == Intent.EMOTIONAL:
        score += 20
    if emotion == Emotion.NEGATIVE:
        score += 15
    if intent == Intent.TECHNICAL:
        score += 10
    return min(100, max(0, score))


def overlap_ratio(a: str, b: str) -> float:
    """Shared distinct words over the larger word set of the two texts."""
    left, right = set(tokenize(a)), set(tokenize(b))
    if not left or not right:
        return 0.0
    return len(left & right) / max(len(left), len(right))


def _recent_user_texts(history: Iterable[ChatMessage], window: int) -> List[str]:
    texts = [m.content for m in history if m.role == "user" and m.content]
    return texts[-window:] if window > 0 else []


def repetition_count(message: str, history: Sequence[ChatMessage], *, window: int = 3, threshold: float = 0.8) -> int:
    current = " ".join((message or "").lower().split())
    if not current:
        return 0
    count = 0
    for text in _recent_user_texts(history, window):
        previous = " ".join(text.lower().split())
        if previous == current or overlap_ratio(previous, current) >= threshold:
            count += 1
    return count


def _routing(
    message: str,
    intent: Intent,
    complexity: Complexity,
    safety: SafetyLevel,
    risk: int,
) -> RoutingHints:
    lower = (message or "").lower()
    factual = any(topic in lower for topic in DETERMINISTIC_TOPICS)
    return RoutingHints(
        requires_low_temperature=risk >= LOW_TEMPERATURE_RISK or factual or safety.rank >= SafetyLevel.HEALTH_QUERY.rank,
        requires_concise=safety == SafetyLevel.ESCALATE,
        requires_structure=complexity == Complexity.COMPLEX and intent in (Intent.TECHNICAL, Intent.LEARNING),
    )


class Classifier:
    def __init__(self, *, repetition_window: int = 3, repetition_threshold: float = 0.8) -> None:
        self.repetition_window = repetition_window
        self.repetition_threshold = repetition_threshold

    def classify(self, message: str, recent_history: Sequence[ChatMessage] = ()) -> ClassificationResult:
        safety = assess_safety(message)
        language = detect_language(message)

        if safety.level == SafetyLevel.DANGEROUS:
            return ClassificationResult(
                intent=Intent.CASUAL,
                secondary_intent=None,
                complexity=Complexity.SIMPLE,
                language=language,
                emotion=Emotion.NEUTRAL,
                safety_level=safety.level,
                safety_action=safety.action,
                confidence=100,
                risk=100,
                blocked=True,
                block_reason=GENERIC_BLOCK_REASON,
                routing=RoutingHints(requires_low_temperature=True, requires_concise=True),
                matched_rules=list(safety.matched),
            )

        intent, secondary = detect_intent(message)
        complexity = detect_complexity(message, intent)
        emotion = detect_emotion(message)
        confidence = confidence_score(message, intent, complexity)
        risk = risk_score(safety.level, intent, emotion)
        repeats = repetition_count(
            message,
            recent_history,
            window=self.repetition_window,
            threshold=self.repetition_threshold,
        )

        return ClassificationResult(
            intent=intent,
            secondary_intent=secondary,
            complexity=complexity,
            language=language,
            emotion=emotion,
            safety_level=safety.level,
            safety_action=safety.action,
            confidence=confidence,
            risk=risk,
            is_repetitive=repeats > 0,
            repetition_count=repeats,
            support_resources=SUPPORT_RESOURCES if safety.level == SafetyLevel.ESCALATE else None,
            clarification_needed=confidence < CLARIFICATION_CONFIDENCE,
            routing=_routing(message, intent, complexity, safety.level, risk),
            matched_rules=list(safety.matched),
        )


def classify(message: str, recent_history: Sequence[ChatMessage] = ()) -> ClassificationResult:
    return Classifier().classify(message, recent_history)


__all__ = [
    "Classifier",
    "SafetyAssessment",
    "GENERIC_BLOCK_REASON",
    "assess_safety",
    "classify",
    "confidence_score",
    "detect_complexity",
    "detect_emotion",
    "detect_intent",
    "detect_language",
    "overlap_ratio",
    "repetition_count",
    "risk_score",
    "tokenize",
]
