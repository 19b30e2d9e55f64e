"""Tests for application settings."""

import pytest

from strategist.core.config import Settings


def _settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]


def test_defaults_match_documented_thresholds() -> None:
    settings = _settings()

    assert settings.INTENT_CONFIDENCE_THRESHOLD == 0.7
    assert settings.PROFILE_UPDATE_CONFIDENCE_THRESHOLD == 0.75
    assert settings.MEMORY_UPSERT_SIMILARITY == 0.85
    assert settings.MEMORY_INSERT_SIMILARITY == 0.92
    assert settings.MAX_MESSAGE_LENGTH == 4000
    assert settings.STREAM_FORMAT == "ndjson"
    assert settings.BLOG_CACHE_HOURS == 168


def test_cors_origins_list_splits_and_strips() -> None:
    settings = _settings(CORS_ORIGINS=" https://a.example , https://b.example,, ")

    assert settings.cors_origins_list == ["https://a.example", "https://b.example"]


def test_supabase_url_must_be_http() -> None:
    with pytest.raises(ValueError):
        _settings(SUPABASE_URL="ftp://db.example")


def test_supabase_url_trailing_slash_removed() -> None:
    settings = _settings(SUPABASE_URL="https://db.example/")

    assert settings.SUPABASE_URL == "https://db.example"


def test_validate_startup_names_every_missing_secret() -> None:
    settings = _settings()

    with pytest.raises(ValueError) as exc_info:
        settings.validate_startup()

    message = str(exc_info.value)
    assert "SUPABASE_URL" in message
    assert "SUPABASE_SERVICE_ROLE_KEY" in message
    assert "LLM_API_KEY" in message


def test_validate_startup_passes_with_required_secrets() -> None:
    settings = _settings(
        SUPABASE_URL="https://db.example",
        SUPABASE_SERVICE_ROLE_KEY="service-key",
        LLM_API_KEY="llm-key",
    )

    settings.validate_startup()


def test_provider_flags_follow_keys() -> None:
    settings = _settings(PERPLEXITY_API_KEY="pplx", HIKER_API_KEY="")

    assert settings.search_configured is True
    assert settings.instagram_configured is False
