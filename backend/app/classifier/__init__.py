from .classifier import (
    GENERIC_BLOCK_REASON,
    Classifier,
    SafetyAssessment,
    assess_safety,
    classify,
    detect_complexity,
    detect_emotion,
    detect_intent,
    detect_language,
    overlap_ratio,
    repetition_count,
)
from .personalization import PersonalizationHint, detect_personalization
from .rules import Rule, RuleTable, rule
from .types import (
    ClassificationResult,
    Complexity,
    Emotion,
    Intent,
    Language,
    RoutingHints,
    SafetyAction,
    SafetyLevel,
)

__all__ = [
    "GENERIC_BLOCK_REASON",
    "Classifier",
    "SafetyAssessment",
    "assess_safety",
    "classify",
    "detect_complexity",
    "detect_emotion",
    "detect_intent",
    "detect_language",
    "overlap_ratio",
    "repetition_count",
    "PersonalizationHint",
    "detect_personalization",
    "Rule",
    "RuleTable",
    "rule",
    "ClassificationResult",
    "Complexity",
    "Emotion",
    "Intent",
    "Language",
    "RoutingHints",
    "SafetyAction",
    "SafetyLevel",
]
