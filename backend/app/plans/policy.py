from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class Plan(str, Enum):
    STARTER = "starter"
    LITE = "lite"
    PLUS = "plus"
    PRO = "pro"
    APEX = "apex"


class CompressionStrategy(str, Enum):
    TRUNCATION = "truncation"
    SELECTIVE = "selective"
    SLIDING_WINDOW = "sliding_window"
    SMART_SUMMARY = "smart_summary"


@dataclass(frozen=True)
class PlanLimits:
    cache_enabled: bool
    cache_entries_per_user: int
    max_branches: int
    context_token_limit: int
    compression_strategy: CompressionStrategy
    daily_tokens: int
    monthly_tokens: int
    max_output_tokens: int


_DEFAULT_LIMITS: Dict[Plan, PlanLimits] = {
    Plan.STARTER: PlanLimits(
        cache_enabled=True,
        cache_entries_per_user=10,
        max_branches=0,
        context_token_limit=2_000,
        compression_strategy=CompressionStrategy.TRUNCATION,
        daily_tokens=20_000,
        monthly_tokens=300_000,
        max_output_tokens=512,
    ),
    Plan.LITE: PlanLimits(
        cache_enabled=True,
        cache_entries_per_user=20,
        max_branches=0,
        context_token_limit=3_000,
        compression_strategy=CompressionStrategy.TRUNCATION,
        daily_tokens=40_000,
        monthly_tokens=800_000,
        max_output_tokens=768,
    ),
    Plan.PLUS: PlanLimits(
        cache_enabled=True,
        cache_entries_per_user=50,
        max_branches=3,
        context_token_limit=4_000,
        compression_strategy=CompressionStrategy.SELECTIVE,
        daily_tokens=100_000,
        monthly_tokens=2_000_000,
        max_output_tokens=1_024,
    ),
    Plan.PRO: PlanLimits(
        cache_enabled=True,
        cache_entries_per_user=200,
        max_branches=5,
        context_token_limit=8_000,
        compression_strategy=CompressionStrategy.SLIDING_WINDOW,
        daily_tokens=300_000,
        monthly_tokens=6_000_000,
        max_output_tokens=2_048,
    ),
    Plan.APEX: PlanLimits(
        cache_enabled=True,
        cache_entries_per_user=500,
        max_branches=10,
        context_token_limit=16_000,
        compression_strategy=CompressionStrategy.SMART_SUMMARY,
        daily_tokens=1_000_000,
        monthly_tokens=20_000_000,
        max_output_tokens=4_096,
    ),
}


def resolve_plan(value: str | Plan | None) -> Plan:
    """Resolve a plan name, defaulting to STARTER for unknown values."""
    if isinstance(value, Plan):
        return value
    name = (value or "").strip().lower()
    if name in Plan._value2member_map_:
        return Plan(name)
    return Plan.STARTER


def get_plan_limits(plan: Plan) -> PlanLimits:
    return _DEFAULT_LIMITS.get(plan, _DEFAULT_LIMITS[Plan.STARTER])


__all__ = ["Plan", "PlanLimits", "CompressionStrategy", "resolve_plan", "get_plan_limits"]
