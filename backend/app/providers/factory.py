"""Build the configured LLM provider from settings."""

from __future__ import annotations

import logging
from typing import Optional

from backend.app.config.settings import Settings

from .base import LLMProvider
from .openai_provider import DEFAULT_OPENAI_URL, OpenAIProvider

logger = logging.getLogger(__name__)

_KNOWN_PROVIDERS = ("openai", "openai_compat", "local")


def create_provider(settings: Settings) -> Optional[LLMProvider]:
    """
    Returns None when no provider is configured; raises ValueError on a bad configuration.
    """
    provider_type = (settings.model_provider or "none").lower()
    if provider_type == "none":
        return None
    if provider_type not in _KNOWN_PROVIDERS:
        raise ValueError(f"Unknown MODEL_PROVIDER: {provider_type}. Must be one of {', '.join(_KNOWN_PROVIDERS)}")
    if provider_type != "local" and not settings.model_api_key:
        raise ValueError("MODEL_API_KEY is required for hosted providers")
    if provider_type != "openai" and not settings.model_base_url:
        raise ValueError(f"MODEL_BASE_URL is required for {provider_type} provider")

    provider = OpenAIProvider(
        api_key=settings.model_api_key or "local",
        base_url=settings.model_base_url or DEFAULT_OPENAI_URL,
        timeout_seconds=float(settings.model_timeout_seconds),
        connect_timeout_seconds=float(settings.model_connect_timeout_seconds),
    )
    provider.name = provider_type
    logger.info("[Provider] configured", extra={"provider": provider_type, "model": settings.model_name})
    return provider


__all__ = ["create_provider"]
