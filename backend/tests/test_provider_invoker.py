from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backend.app.config import Settings
from backend.app.context.messages import ChatMessage
from backend.app.providers import LLMProviderError, LLMRequest, OpenAIProvider, ProviderModelInvoker, create_provider
from backend.app.reliability.errors import FatalProviderError, TransientProviderError

_OK_BODY = {
    "choices": [{"message": {"content": " Hello there! "}, "finish_reason": "stop"}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 3},
}


def _invoker(handler, seen=None):
    def _recording(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    provider = OpenAIProvider(
        api_key="sk-test",
        base_url="https://llm.test/v1/chat/completions",
        transport=httpx.MockTransport(_recording),
    )
    return ProviderModelInvoker(provider, "test-model")


def _invoke(invoker, history=None, user_context=None):
    return asyncio.run(
        invoker.invoke(
            "You are Sage.",
            history if history is not None else [ChatMessage("user", "hi")],
            0.7,
            user_context if user_context is not None else {"max_output_tokens": 256},
        )
    )


class TestProviderModelInvoker:
    def test_success_maps_usage_and_metadata(self):
        seen = []
        result = _invoke(_invoker(lambda request: httpx.Response(200, json=_OK_BODY), seen))
        assert result.text == "Hello there!"
        assert result.usage.prompt_tokens == 12
        assert result.usage.completion_tokens == 3
        assert result.metadata == {"model": "test-model", "provider": "openai", "finish_reason": "stop"}

        sent = json.loads(seen[0].content)
        assert seen[0].headers["Authorization"] == "Bearer sk-test"
        assert sent["model"] == "test-model"
        assert sent["max_tokens"] == 256
        assert sent["messages"] == [
            {"role": "system", "content": "You are Sage."},
            {"role": "user", "content": "hi"},
        ]

    def test_missing_usage_falls_back_to_estimates(self):
        body = {"choices": [{"message": {"content": "abcdefgh"}}]}
        result = _invoke(_invoker(lambda request: httpx.Response(200, json=body)))
        # "You are Sage." is 13 chars, "hi" is 2.
        assert result.usage.prompt_tokens == 4 + 1
        assert result.usage.completion_tokens == 2

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status_is_transient(self, status):
        with pytest.raises(TransientProviderError):
            _invoke(_invoker(lambda request: httpx.Response(status, json={"error": "busy"})))

    @pytest.mark.parametrize("status", [400, 401, 403])
    def test_client_errors_are_fatal(self, status):
        with pytest.raises(FatalProviderError):
            _invoke(_invoker(lambda request: httpx.Response(status, json={"error": "nope"})))

    def test_empty_completion_is_transient(self):
        body = {"choices": [{"message": {"content": "   "}}]}
        with pytest.raises(TransientProviderError):
            _invoke(_invoker(lambda request: httpx.Response(200, json=body)))

    def test_malformed_body_is_transient(self):
        with pytest.raises(TransientProviderError):
            _invoke(_invoker(lambda request: httpx.Response(200, json={"unexpected": True})))

    def test_invalid_json_is_transient(self):
        with pytest.raises(TransientProviderError):
            _invoke(_invoker(lambda request: httpx.Response(200, content=b"not json")))

    def test_connection_error_is_transient(self):
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientProviderError):
            _invoke(_invoker(_refuse))


class TestOpenAIProvider:
    def test_status_code_and_retryable_flag(self):
        provider = OpenAIProvider(
            api_key="k",
            transport=httpx.MockTransport(lambda request: httpx.Response(401, json={})),
        )
        with pytest.raises(LLMProviderError) as exc_info:
            asyncio.run(provider.chat_completion(LLMRequest(messages=[], model="m")))
        assert exc_info.value.status_code == 401
        assert exc_info.value.retryable is False

    def test_extra_params_are_forwarded(self):
        seen = []

        def _handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_OK_BODY)

        provider = OpenAIProvider(api_key="k", transport=httpx.MockTransport(_handler))
        asyncio.run(
            provider.chat_completion(LLMRequest(messages=[], model="m", extra_params={"top_p": 0.9}))
        )
        assert seen[0]["top_p"] == 0.9
        assert "max_tokens" not in seen[0]


class TestCreateProvider:
    def test_none_configured(self):
        assert create_provider(Settings(MODEL_PROVIDER="none")) is None

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_provider(Settings(MODEL_PROVIDER="bogus"))

    def test_hosted_requires_key(self):
        with pytest.raises(ValueError):
            create_provider(Settings(MODEL_PROVIDER="openai", MODEL_API_KEY=""))

    def test_compat_requires_base_url(self):
        with pytest.raises(ValueError):
            create_provider(Settings(MODEL_PROVIDER="openai_compat", MODEL_API_KEY="k", MODEL_BASE_URL=""))

    def test_local_provider(self):
        provider = create_provider(Settings(MODEL_PROVIDER="local", MODEL_BASE_URL="http://localhost:8000/v1/chat/completions"))
        assert provider.name == "local"
        assert provider.base_url == "http://localhost:8000/v1/chat/completions"
