from __future__ import annotations

from typing import Any, Dict

from backend.app.observability.logging import safe_redact, structured_log


def counter(name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
    structured_log({"type": "metric", "metric_type": "counter", "name": name, "value": int(value), "labels": labels or {}})


def histogram(name: str, value: float, labels: dict[str, str] | None = None) -> None:
    structured_log({"type": "metric", "metric_type": "histogram", "name": name, "value": float(value), "labels": labels or {}})


def event(name: str, fields: Dict[str, Any]) -> None:
    structured_log({"type": "event", "name": name, "fields": safe_redact(fields)})


def build_turn_summary_fields(
    *,
    status: str,
    reason_code: str | None,
    plan: str,
    latency_ms: float,
    cache_hit: bool,
    attempts: int,
    prompt_tokens: int,
    completion_tokens: int,
    safety_level: str | None,
    response_mode: str | None,
) -> Dict[str, Any]:
    return {
        "status": status,
        "reason_code": reason_code[:64] if reason_code else None,
        "plan": plan,
        "latency_ms": round(float(latency_ms), 2),
        "cache_hit": bool(cache_hit),
        "attempts": int(attempts),
        "prompt_tokens": int(prompt_tokens),
        "completion_tokens": int(completion_tokens),
        "safety_level": safety_level,
        "response_mode": response_mode,
    }


__all__ = ["counter", "histogram", "event", "build_turn_summary_fields"]
