from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Intent(str, Enum):
    GREETING = "greeting"
    EMOTIONAL = "emotional"
    TASK = "task"
    LEARNING = "learning"
    TECHNICAL = "technical"
    CREATIVE = "creative"
    QUESTION = "question"
    CASUAL = "casual"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class Language(str, Enum):
    EN = "en"
    HI = "hi"
    MIX = "mix"


class Emotion(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class SafetyLevel(str, Enum):
    """Ordered lattice. Compare with ``rank``, never with string ordering."""

    CLEAN = "clean"
    SENSITIVE = "sensitive"
    HEALTH_QUERY = "health_query"
    ESCALATE = "escalate"
    DANGEROUS = "dangerous"

    @property
    def rank(self) -> int:
        return _SAFETY_RANK[self]


_SAFETY_RANK = {
    SafetyLevel.CLEAN: 0,
    SafetyLevel.SENSITIVE: 1,
    SafetyLevel.HEALTH_QUERY: 2,
    SafetyLevel.ESCALATE: 3,
    SafetyLevel.DANGEROUS: 4,
}


class SafetyAction(str, Enum):
    ALLOW = "allow"
    ALLOW_WITH_GUARDRAILS = "allow_with_guardrails"
    ESCALATE = "escalate"
    DENY = "deny"


@dataclass(frozen=True)
class RoutingHints:
    requires_low_temperature: bool = False
    requires_concise: bool = False
    requires_structure: bool = False


@dataclass
class ClassificationResult:
    intent: Intent
    secondary_intent: Optional[Intent]
    complexity: Complexity
    language: Language
    emotion: Emotion
    safety_level: SafetyLevel
    safety_action: SafetyAction
    confidence: int
    risk: int
    is_repetitive: bool = False
    repetition_count: int = 0
    blocked: bool = False
    block_reason: Optional[str] = None
    support_resources: Optional[str] = None
    clarification_needed: bool = False
    routing: RoutingHints = field(default_factory=RoutingHints)
    matched_rules: List[str] = field(default_factory=list)

    def summary(self) -> dict:
        return {
            "intent": self.intent.value,
            "secondary_intent": self.secondary_intent.value if self.secondary_intent else None,
            "complexity": self.complexity.value,
            "language": self.language.value,
            "emotion": self.emotion.value,
            "safety_level": self.safety_level.value,
            "safety_action": self.safety_action.value,
            "confidence": self.confidence,
            "risk": self.risk,
            "is_repetitive": self.is_repetitive,
        }


__all__ = [
    "Intent",
    "Complexity",
    "Language",
    "Emotion",
    "SafetyLevel",
    "SafetyAction",
    "RoutingHints",
    "ClassificationResult",
]
