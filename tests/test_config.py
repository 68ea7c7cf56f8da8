"""Tests for configuration."""

import pytest

from kb_assistant.config import (
    AuthSettings,
    ChunkingSettings,
    DatabaseSettings,
    Environment,
    Settings,
    UploadSettings,
)


def test_default_settings():
    settings = Settings()
    assert settings.app_name == "kb-assistant"
    assert settings.chunking.chunk_size_chars == 2000
    assert settings.chunking.overlap_chars == 200
    assert settings.retrieval.top_k == 5
    assert settings.chat.max_concurrent_streams == 5
    assert settings.rate_limit.chat_requests == 60
    assert settings.rate_limit.upload_requests == 10
    assert settings.rate_limit.window_seconds == 60


def test_environment_parsing(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "PRODUCTION")
    assert Settings().environment == Environment.PRODUCTION

    monkeypatch.setenv("ENVIRONMENT", "unknown")
    assert Settings().environment == Environment.DEVELOPMENT


def test_invalid_log_level():
    with pytest.raises(ValueError):
        Settings(log_level="verbose")


def test_database_url_gets_async_driver():
    assert DatabaseSettings(url="postgres://u:p@db/kb").async_url == "postgresql+asyncpg://u:p@db/kb"
    assert DatabaseSettings(url="sqlite:///./kb.db").async_url == "sqlite+aiosqlite:///./kb.db"
    assert DatabaseSettings(url="sqlite+aiosqlite:///./kb.db").is_sqlite


def test_comma_separated_lists(monkeypatch):
    monkeypatch.setenv("CHAT_API_KEYS", "one, two,,three")
    monkeypatch.setenv("UPLOAD_ALLOWED_EXTENSIONS", ".PDF,txt")

    assert AuthSettings().chat_api_keys == ["one", "two", "three"]
    assert UploadSettings().allowed_extensions == ["pdf", "txt"]


def test_chunking_from_environment(monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE_TOKENS", "100")
    monkeypatch.setenv("CHUNK_OVERLAP_TOKENS", "10")

    chunking = ChunkingSettings()

    assert chunking.chunk_size_chars == 400
    assert chunking.overlap_chars == 40


def test_production_requires_admin_key():
    settings = Settings(environment="production")
    with pytest.raises(ValueError, match="ADMIN_API_KEY"):
        settings.validate_production_settings()


def test_rate_limits_from_environment(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_CHAT_REQUESTS", "5")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")

    settings = Settings()

    assert settings.rate_limit.chat_requests == 5
    assert settings.rate_limit.enabled is False


def test_production_needs_an_openai_key_for_embeddings(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY_ENABLED", "true")
    monkeypatch.setenv("ADMIN_API_KEY", "admin-secret")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-unused")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        Settings(environment="production").validate_production_settings()

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    settings = Settings(environment="production")
    settings.validate_production_settings()
    assert not hasattr(settings.llm, "anthropic_api_key")
