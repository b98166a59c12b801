"""LLM provider abstraction so the model invoker can switch between OpenAI-style backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class LLMRequest:
    """Unified request format for all LLM providers."""
    messages: list[Dict[str, str]]
    model: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    extra_params: Optional[Dict[str, Any]] = None


@dataclass
class LLMResponse:
    """Unified response format from LLM providers."""
    text: str
    usage: Optional[Dict[str, int]] = None
    raw: Optional[Dict[str, Any]] = None
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "llm"

    @abstractmethod
    async def chat_completion(self, request: LLMRequest) -> LLMResponse:
        """
        Execute a chat completion request.

        Args:
            request: Unified LLM request

        Returns:
            LLMResponse with text and metadata

        Raises:
            LLMProviderError: On provider-specific errors
        """


class LLMProviderError(Exception):
    """Provider failure. ``retryable`` separates blips (timeouts, 429, 5xx) from permanent errors."""

    def __init__(
        self,
        message: str,
        provider: str,
        original_error: Optional[Exception] = None,
        *,
        retryable: bool = True,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error
        self.retryable = retryable
        self.status_code = status_code


__all__ = ["LLMProvider", "LLMRequest", "LLMResponse", "LLMProviderError"]
