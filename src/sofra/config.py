"""
Sofra - Configuration and settings.

All runtime knobs come from the environment (or a local .env file).
Supabase credentials are optional so the core can run against a fake
store in tests and in offline CLI runs.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Sofra application settings.

    Groups: credentials, application, local cache, timing, LLM retry.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4.1-mini"

    # Supabase (durable tier)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None

    # LangSmith (optional)
    langchain_tracing_v2: bool = False
    langchain_api_key: str | None = None
    langchain_project: str = "sofra"

    # Application
    sofra_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Prompt logging
    # SOFRA_LOG_PROMPTS=1 - log to local files (dev only)
    sofra_log_prompts: bool = False

    # Local (stale fallback) tier
    local_cache_dir: Path = Path(".sofra_cache")
    local_cache_ttl_hours: int = 72

    # Timing
    default_time_ceiling_minutes: int = 45
    generation_timeout_seconds: float = 90.0
    first_ready_timeout_seconds: float = 20.0
    status_poll_interval_seconds: float = 5.0

    # LLM transport retry
    llm_request_timeout_seconds: float = 60.0
    llm_max_attempts: int = 2
    llm_retry_base_delay_ms: int = 500
    llm_retry_max_delay_ms: int = 2000
    llm_retry_jitter_ratio: float = 0.2

    @property
    def is_development(self) -> bool:
        return self.sofra_env == "development"

    @property
    def is_production(self) -> bool:
        return self.sofra_env == "production"

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience singleton - lazy loaded
class _SettingsProxy:
    """Lazy proxy for settings to avoid loading .env at import time."""

    _instance: Settings | None = None

    def __getattr__(self, name: str):
        if self._instance is None:
            self._instance = get_settings()
        return getattr(self._instance, name)


settings = _SettingsProxy()
