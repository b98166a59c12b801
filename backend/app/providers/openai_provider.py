"""OpenAI and OpenAI-compatible chat completion provider."""

from __future__ import annotations

import json
from typing import Optional

import httpx

from .base import LLMProvider, LLMProviderError, LLMRequest, LLMResponse

DEFAULT_OPENAI_URL = "https://api.openai.com/v1/chat/completions"

_RETRYABLE_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}


class OpenAIProvider(LLMProvider):
    """Works against OpenAI and any service speaking the same chat completions API (vLLM, Groq, Together...)."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_OPENAI_URL,
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.transport = transport

    async def chat_completion(self, request: LLMRequest) -> LLMResponse:
        payload = {
            "model": request.model,
            "messages": request.messages,
            "temperature": request.temperature,
        }
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        if request.extra_params:
            payload.update(request.extra_params)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        timeout = httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds)

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                resp = await client.post(self.base_url, headers=headers, json=payload, timeout=timeout)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise LLMProviderError(f"{self.name} request timeout", provider=self.name, original_error=exc) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise LLMProviderError(
                f"{self.name} HTTP {status}",
                provider=self.name,
                original_error=exc,
                retryable=status in _RETRYABLE_STATUS,
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMProviderError(f"{self.name} HTTP error: {exc}", provider=self.name, original_error=exc) from exc
        except json.JSONDecodeError as exc:
            raise LLMProviderError(f"{self.name} returned invalid JSON", provider=self.name, original_error=exc) from exc

        try:
            choice = data["choices"][0]
            return LLMResponse(
                text=choice["message"]["content"] or "",
                usage=data.get("usage"),
                raw=data,
                finish_reason=choice.get("finish_reason"),
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError(
                f"{self.name} response missing expected fields: {exc}",
                provider=self.name,
                original_error=exc,
            ) from exc


__all__ = ["OpenAIProvider", "DEFAULT_OPENAI_URL"]
