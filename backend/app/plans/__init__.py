from .policy import CompressionStrategy, Plan, PlanLimits, get_plan_limits, resolve_plan
from .tokens import (
    clamp_text_to_token_limit,
    estimate_message_tokens,
    estimate_tokens_from_text,
)

__all__ = [
    "Plan",
    "PlanLimits",
    "CompressionStrategy",
    "get_plan_limits",
    "resolve_plan",
    "clamp_text_to_token_limit",
    "estimate_message_tokens",
    "estimate_tokens_from_text",
]
