"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # LLM providers (routed through LiteLLM)
    LLM_API_KEY: SecretStr = SecretStr("")
    EMBEDDING_API_KEY: SecretStr = SecretStr("")
    CHAT_MODEL: str = "openai/gpt-4.1"
    DECISION_MODEL: str = "openai/gpt-4.1-mini"
    TITLE_MODEL: str = "openai/gpt-4.1-nano"
    EMBEDDING_MODEL: str = "openai/text-embedding-3-small"

    # Web search providers
    PERPLEXITY_API_KEY: SecretStr = SecretStr("")
    PERPLEXITY_MODEL: str = "sonar"
    GROK_API_KEY: SecretStr = SecretStr("")
    GROK_MODEL: str = "grok-3-mini"

    # Instagram data provider
    HIKER_API_KEY: SecretStr = SecretStr("")
    HIKER_API_URL: str = "https://api.hikerapi.com"

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # Streaming wire format for turn responses
    STREAM_FORMAT: Literal["ndjson", "markers"] = "ndjson"

    # Confidence gates
    INTENT_CONFIDENCE_THRESHOLD: float = 0.7
    PROFILE_UPDATE_CONFIDENCE_THRESHOLD: float = 0.75

    # Memory configuration
    MEMORY_SEARCH_LIMIT: int = 5
    MEMORY_UPSERT_SIMILARITY: float = 0.85  # externally-sourced facts replace near-duplicates
    MEMORY_INSERT_SIMILARITY: float = 0.92  # conversation facts dropped only when near-identical

    # Turn limits
    MAX_MESSAGE_LENGTH: int = 4000
    DEFAULT_MESSAGES_LIMIT: int = 10
    INTENT_TIMEOUT_SECONDS: float = 20.0
    PROVIDER_TIMEOUT_SECONDS: float = 60.0

    # Enrichment cache freshness
    INSTAGRAM_CACHE_HOURS: float = 24
    HASHTAG_CACHE_HOURS: float = 6
    BLOG_CACHE_HOURS: float = 24 * 7
    HASHTAG_SEARCH_LIMIT: int = 20

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def search_configured(self) -> bool:
        """Check if the default web search provider has credentials."""
        return bool(self.PERPLEXITY_API_KEY.get_secret_value())

    @property
    def grok_configured(self) -> bool:
        """Check if X/Twitter search through Grok is available."""
        return bool(self.GROK_API_KEY.get_secret_value())

    @property
    def instagram_configured(self) -> bool:
        """Check if the Instagram data provider has credentials."""
        return bool(self.HIKER_API_KEY.get_secret_value())

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Raises:
            ValueError: If any required secret is missing or empty.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            "LLM_API_KEY": self.LLM_API_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")

        for name, configured in (
            ("PERPLEXITY_API_KEY", self.search_configured),
            ("HIKER_API_KEY", self.instagram_configured),
        ):
            if not configured:
                logger.warning("%s not configured - related enrichment disabled", name)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Startup validation is deferred to the application lifespan so that
    modules can be imported without a fully populated environment.

    Returns:
        Settings instance.
    """
    return Settings()


# Global settings instance - import this for easy access
settings = get_settings()
