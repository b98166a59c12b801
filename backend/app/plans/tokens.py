from __future__ import annotations

from math import ceil


def estimate_tokens_from_text(text: str) -> int:
    """
    Deterministic token estimator used for budgets and quota.
    Approximation: 1 token ~= 4 characters. Not a real tokenizer.
    """
    if not isinstance(text, str) or not text:
        return 0
    return max(1, ceil(len(text) / 4))


def estimate_message_tokens(role: str, content: str) -> int:
    """Chat history entries pay for their role label as well as their content."""
    return ceil((len(content or "") + len(role or "")) / 4)


def clamp_text_to_token_limit(text: str, max_tokens: int) -> str:
    if max_tokens <= 0 or not isinstance(text, str):
        return ""
    max_chars = max_tokens * 4
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


__all__ = [
    "estimate_tokens_from_text",
    "estimate_message_tokens",
    "clamp_text_to_token_limit",
]
