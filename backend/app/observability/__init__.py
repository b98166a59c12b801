from __future__ import annotations

from .analytics import LoggingAnalyticsSink, RecordingAnalyticsSink
from .logging import hash_subject, safe_redact, structured_log
from .metrics import build_turn_summary_fields, counter, event, histogram

__all__ = [
    "LoggingAnalyticsSink",
    "RecordingAnalyticsSink",
    "structured_log",
    "safe_redact",
    "hash_subject",
    "counter",
    "histogram",
    "event",
    "build_turn_summary_fields",
]
