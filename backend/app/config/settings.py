from __future__ import annotations

import functools
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", protected_namespaces=())

    # App / env
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    request_id_header: str = Field("x-request-id", alias="REQUEST_ID_HEADER")
    assistant_name: str = Field("Sage", alias="ASSISTANT_NAME")
    default_timezone: str = Field("Asia/Kolkata", alias="DEFAULT_TIMEZONE")

    # Model provider
    model_provider: str = Field("none", alias="MODEL_PROVIDER")
    model_name: str = Field("default", alias="MODEL_NAME")
    model_base_url: Optional[str] = Field(None, alias="MODEL_BASE_URL")
    model_api_key: Optional[str] = Field(None, alias="MODEL_API_KEY")
    model_timeout_seconds: int = Field(30, alias="MODEL_TIMEOUT_SECONDS")
    model_connect_timeout_seconds: int = Field(10, alias="MODEL_CONNECT_TIMEOUT_SECONDS")
    model_max_output_tokens: int = Field(1024, alias="MODEL_MAX_OUTPUT_TOKENS")
    model_temperature: float = Field(0.7, alias="MODEL_TEMPERATURE")
    model_low_temperature: float = Field(0.3, alias="MODEL_LOW_TEMPERATURE")

    # Retry (model invocation only)
    model_max_attempts: int = Field(3, alias="MODEL_MAX_ATTEMPTS")
    model_retry_delay_ms: int = Field(1000, alias="MODEL_RETRY_DELAY_MS")

    # Prompt budget
    prompt_budget_tokens: int = Field(600, alias="PROMPT_BUDGET_TOKENS")

    # Semantic cache
    cache_enabled: bool = Field(True, alias="CACHE_ENABLED")
    cache_similarity_threshold: float = Field(0.85, alias="CACHE_SIMILARITY_THRESHOLD")
    cache_ttl_seconds: int = Field(3600, alias="CACHE_TTL_SECONDS")
    cache_max_entries: int = Field(1000, alias="CACHE_MAX_ENTRIES")
    cache_sweep_interval_seconds: int = Field(300, alias="CACHE_SWEEP_INTERVAL_SECONDS")
    cache_session_scoped: bool = Field(False, alias="CACHE_SESSION_SCOPED")

    # Branching
    branching_enabled: bool = Field(True, alias="BRANCHING_ENABLED")
    max_branch_depth: int = Field(5, alias="MAX_BRANCH_DEPTH")
    max_branches_per_session: int = Field(10, alias="MAX_BRANCHES_PER_SESSION")
    branch_retention_days: int = Field(30, alias="BRANCH_RETENTION_DAYS")

    # Classifier
    repetition_window: int = Field(3, alias="REPETITION_WINDOW")
    repetition_threshold: float = Field(0.8, alias="REPETITION_THRESHOLD")

    # Turn handling
    quota_estimate_overhead: int = Field(100, alias="QUOTA_ESTIMATE_OVERHEAD")
    history_fetch_limit: int = Field(50, alias="HISTORY_FETCH_LIMIT")
    search_enabled: bool = Field(True, alias="SEARCH_ENABLED")
    search_timeout_seconds: int = Field(8, alias="SEARCH_TIMEOUT_SECONDS")
    personalization_enabled: bool = Field(True, alias="PERSONALIZATION_ENABLED")
    max_message_chars: int = Field(8000, alias="MAX_MESSAGE_CHARS")

    @field_validator(
        "model_timeout_seconds",
        "model_connect_timeout_seconds",
        "model_max_output_tokens",
        "model_retry_delay_ms",
        "cache_ttl_seconds",
        "cache_max_entries",
        "max_branch_depth",
        "max_branches_per_session",
        "branch_retention_days",
        "quota_estimate_overhead",
        "history_fetch_limit",
        "search_timeout_seconds",
    )
    @classmethod
    def clamp_non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("model_max_attempts", "prompt_budget_tokens", "cache_sweep_interval_seconds", "repetition_window")
    @classmethod
    def clamp_positive(cls, v: int) -> int:
        return max(1, v)

    @field_validator("cache_similarity_threshold", "repetition_threshold")
    @classmethod
    def clamp_ratio(cls, v: float) -> float:
        return min(1.0, max(0.0, float(v)))

    @field_validator("app_env")
    @classmethod
    def normalize_env(cls, v: str) -> str:
        return (v or "dev").lower()

    @property
    def model_calls_configured(self) -> bool:
        return self.model_provider not in ("", "none") and bool(self.model_api_key or self.model_provider == "local")


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def validate_for_env(settings: Settings) -> Dict[str, Any]:
    issues: list[str] = []
    if settings.app_env == "prod":
        if settings.model_provider == "none":
            issues.append("MODEL_PROVIDER must be set in prod")
        if not settings.model_api_key and settings.model_provider != "local":
            issues.append("MODEL_API_KEY required in prod unless provider is local")
        if settings.cache_similarity_threshold < 0.5:
            issues.append("CACHE_SIMILARITY_THRESHOLD below 0.5 serves loosely related answers")
    summary = settings_public_summary(settings)
    summary["issues"] = issues
    return summary


def settings_public_summary(settings: Optional[Settings] = None) -> Dict[str, Any]:
    s = settings or get_settings()
    return {
        "env": s.app_env,
        "model_provider": s.model_provider,
        "model_name": s.model_name,
        "model_calls_configured": s.model_calls_configured,
        "model_timeout_seconds": s.model_timeout_seconds,
        "model_max_attempts": s.model_max_attempts,
        "prompt_budget_tokens": s.prompt_budget_tokens,
        "cache": {
            "enabled": s.cache_enabled,
            "threshold": s.cache_similarity_threshold,
            "ttl_seconds": s.cache_ttl_seconds,
            "max_entries": s.cache_max_entries,
        },
        "branching": {
            "enabled": s.branching_enabled,
            "max_depth": s.max_branch_depth,
            "max_per_session": s.max_branches_per_session,
        },
    }


__all__ = ["Settings", "get_settings", "settings_public_summary", "validate_for_env"]
