"""Error taxonomy for turn handling.

Every user-visible failure carries a stable ``reason_code`` and a short public
message. Internal detail (stack traces, provider payloads) stays in the logs.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple


class ReasonCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    MONTHLY_LIMIT_EXCEEDED = "monthly_limit_exceeded"
    SAFETY_BLOCKED = "safety_blocked"
    SESSION_NOT_FOUND = "session_not_found"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_FATAL = "provider_fatal"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTEGRITY_ERROR = "integrity_error"
    INTERNAL_ERROR = "internal_error"


class OrchestrationError(Exception):
    reason_code: ReasonCode = ReasonCode.INTERNAL_ERROR
    public_message: str = "Something went wrong. Please try again."
    http_status: int = 500

    def __init__(self, detail: str = "", *, reason_code: Optional[ReasonCode] = None, message: Optional[str] = None) -> None:
        super().__init__(detail or message or self.public_message)
        if reason_code is not None:
            self.reason_code = reason_code
        if message is not None:
            self.public_message = message


class ValidationError(OrchestrationError):
    reason_code = ReasonCode.VALIDATION_ERROR
    public_message = "The request is missing required fields or is malformed."
    http_status = 400


class QuotaExceeded(OrchestrationError):
    reason_code = ReasonCode.DAILY_LIMIT_EXCEEDED
    public_message = "Usage limit reached."
    http_status = 429

    def __init__(self, reason_code: ReasonCode = ReasonCode.DAILY_LIMIT_EXCEEDED, *, remaining: int = 0) -> None:
        if reason_code == ReasonCode.MONTHLY_LIMIT_EXCEEDED:
            message = "Monthly usage limit reached. It resets at the start of next month."
        else:
            message = "Daily usage limit reached. It resets tomorrow."
        super().__init__(reason_code.value, reason_code=reason_code, message=message)
        self.remaining = remaining


class SafetyBlocked(OrchestrationError):
    reason_code = ReasonCode.SAFETY_BLOCKED
    public_message = "This request can't be helped with."
    http_status = 403


class SessionNotFound(OrchestrationError):
    reason_code = ReasonCode.SESSION_NOT_FOUND
    public_message = "Conversation not found."
    http_status = 404


class TransientProviderError(OrchestrationError):
    """Model or search call failed in a way worth retrying."""

    reason_code = ReasonCode.PROVIDER_TRANSIENT
    public_message = "The model is temporarily unavailable."
    http_status = 503


class FatalProviderError(OrchestrationError):
    """Model call failed in a way retries cannot fix (auth, bad request)."""

    reason_code = ReasonCode.PROVIDER_FATAL
    public_message = "The model could not process this request."
    http_status = 502


class UpstreamUnavailable(OrchestrationError):
    reason_code = ReasonCode.UPSTREAM_UNAVAILABLE
    public_message = "The model is temporarily unavailable. Please try again shortly."
    http_status = 503

    def __init__(self, detail: str = "", *, attempts: int = 0) -> None:
        super().__init__(detail)
        self.attempts = attempts


class IntegrityError(OrchestrationError):
    """Inconsistent stored data. Callers degrade rather than fail the turn."""

    reason_code = ReasonCode.INTEGRITY_ERROR
    public_message = "Stored conversation data is inconsistent."
    http_status = 409


_STATUS_BY_REASON = {
    ReasonCode.VALIDATION_ERROR: ValidationError.http_status,
    ReasonCode.DAILY_LIMIT_EXCEEDED: QuotaExceeded.http_status,
    ReasonCode.MONTHLY_LIMIT_EXCEEDED: QuotaExceeded.http_status,
    ReasonCode.SAFETY_BLOCKED: SafetyBlocked.http_status,
    ReasonCode.SESSION_NOT_FOUND: SessionNotFound.http_status,
    ReasonCode.PROVIDER_TRANSIENT: TransientProviderError.http_status,
    ReasonCode.PROVIDER_FATAL: FatalProviderError.http_status,
    ReasonCode.UPSTREAM_UNAVAILABLE: UpstreamUnavailable.http_status,
    ReasonCode.INTEGRITY_ERROR: IntegrityError.http_status,
}


def http_status_for(reason_code: Optional[str]) -> int:
    try:
        return _STATUS_BY_REASON.get(ReasonCode(reason_code), 500)
    except ValueError:
        return 500


def to_public_error(exc: BaseException) -> Tuple[str, str, int]:
    """Map any exception to (reason_code, message, http_status) without leaking detail."""
    if isinstance(exc, OrchestrationError):
        return exc.reason_code.value, exc.public_message[:200], exc.http_status
    return ReasonCode.INTERNAL_ERROR.value, OrchestrationError.public_message, 500


__all__ = [
    "ReasonCode",
    "OrchestrationError",
    "ValidationError",
    "QuotaExceeded",
    "SafetyBlocked",
    "SessionNotFound",
    "TransientProviderError",
    "FatalProviderError",
    "UpstreamUnavailable",
    "IntegrityError",
    "http_status_for",
    "to_public_error",
]
