from .messages import ChatMessage
from .window import (
    CompressionResult,
    ContextWindowManager,
    estimate_history_tokens,
    message_priority,
    summarize,
)

__all__ = [
    "ChatMessage",
    "CompressionResult",
    "ContextWindowManager",
    "estimate_history_tokens",
    "message_priority",
    "summarize",
]
