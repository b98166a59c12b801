from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from backend.app.context.messages import ChatMessage
from backend.app.integration.contracts import ModelResult, ModelUsage
from backend.app.plans.tokens import estimate_tokens_from_text
from backend.app.reliability.errors import FatalProviderError, TransientProviderError

from .base import LLMProvider, LLMProviderError, LLMRequest

logger = logging.getLogger(__name__)


class ProviderModelInvoker:
    """Adapts an ``LLMProvider`` to the ``ModelInvoker`` contract used by the orchestrator."""

    def __init__(self, provider: LLMProvider, model: str, *, max_output_tokens: Optional[int] = None) -> None:
        self.provider = provider
        self.model = model
        self.max_output_tokens = max_output_tokens

    async def invoke(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        temperature: float,
        user_context: Mapping[str, Any],
    ) -> ModelResult:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(m.as_dict() for m in history)
        max_tokens = user_context.get("max_output_tokens") or self.max_output_tokens
        request = LLMRequest(messages=messages, model=self.model, temperature=temperature, max_tokens=max_tokens)

        try:
            response = await self.provider.chat_completion(request)
        except LLMProviderError as exc:
            logger.warning(
                "[Invoker] provider error",
                extra={"provider": exc.provider, "status": exc.status_code, "retryable": exc.retryable},
            )
            if exc.retryable:
                raise TransientProviderError(str(exc)) from exc
            raise FatalProviderError(str(exc)) from exc

        text = (response.text or "").strip()
        if not text:
            raise TransientProviderError("empty completion")

        usage = response.usage or {}
        prompt_tokens = usage.get("prompt_tokens")
        if prompt_tokens is None:
            prompt_tokens = sum(estimate_tokens_from_text(m["content"]) for m in messages)
        completion_tokens = usage.get("completion_tokens")
        if completion_tokens is None:
            completion_tokens = estimate_tokens_from_text(text)
        return ModelResult(
            text=text,
            usage=ModelUsage(prompt_tokens=int(prompt_tokens), completion_tokens=int(completion_tokens)),
            metadata={"model": self.model, "provider": self.provider.name, "finish_reason": response.finish_reason},
        )


__all__ = ["ProviderModelInvoker"]
