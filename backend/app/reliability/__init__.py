from backend.app.reliability.engine import RetryPolicy, RetryResult, invoke_with_retry
from backend.app.reliability.errors import (
    FatalProviderError,
    IntegrityError,
    OrchestrationError,
    QuotaExceeded,
    ReasonCode,
    SafetyBlocked,
    SessionNotFound,
    TransientProviderError,
    UpstreamUnavailable,
    ValidationError,
    http_status_for,
    to_public_error,
)

__all__ = [
    "RetryPolicy",
    "RetryResult",
    "invoke_with_retry",
    "FatalProviderError",
    "IntegrityError",
    "OrchestrationError",
    "QuotaExceeded",
    "ReasonCode",
    "SafetyBlocked",
    "SessionNotFound",
    "TransientProviderError",
    "UpstreamUnavailable",
    "ValidationError",
    "http_status_for",
    "to_public_error",
]
