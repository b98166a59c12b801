from .base import LLMProvider, LLMProviderError, LLMRequest, LLMResponse
from .factory import create_provider
from .invoker import ProviderModelInvoker
from .openai_provider import OpenAIProvider

__all__ = [
    "LLMProvider",
    "LLMProviderError",
    "LLMRequest",
    "LLMResponse",
    "OpenAIProvider",
    "ProviderModelInvoker",
    "create_provider",
]
