from .envelope import (
    SAFE_FALLBACK_TEXT,
    SUPPORTIVE_FALLBACK_TEXT,
    SanitizedResponse,
    apply_safety,
    check_response_quality,
    refusal_text,
    sanitize_response,
)
from .health import (
    RESPONSE_MODES,
    HealthVerdict,
    IntentDepth,
    ResponseMode,
    assess_health,
    health_directives,
)

__all__ = [
    "SAFE_FALLBACK_TEXT",
    "SUPPORTIVE_FALLBACK_TEXT",
    "SanitizedResponse",
    "apply_safety",
    "check_response_quality",
    "refusal_text",
    "sanitize_response",
    "RESPONSE_MODES",
    "HealthVerdict",
    "IntentDepth",
    "ResponseMode",
    "assess_health",
    "health_directives",
]
