"""
Unit tests for configuration module.

Tests settings loading, validation, nested configuration, and caching.
"""

import logging

import pytest
from pydantic import ValidationError

from sqlagent.config import (
    ChromaSettings,
    DatabaseSettings,
    LLMSettings,
    LoggingSettings,
    ResilienceSettings,
    RetrievalSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)


class TestLLMSettings:
    """Test LLM configuration."""

    def test_defaults(self):
        settings = LLMSettings()

        assert settings.default_provider == "openai"
        assert settings.openai_model == "gpt-4o-mini"
        assert settings.temperature == 0.1
        assert settings.rate_limit_cooldown == 60

    def test_api_key_validation_requires_sk_prefix(self, monkeypatch):
        """API key must start with 'sk-'."""
        monkeypatch.setenv("LLM_OPENAI_API_KEY", "invalid-key-1234567890abcdef")

        with pytest.raises(ValidationError, match="must start with 'sk-'"):
            LLMSettings()

    def test_api_key_minimum_length(self, monkeypatch):
        monkeypatch.setenv("LLM_OPENAI_API_KEY", "sk-short")

        with pytest.raises(ValidationError):
            LLMSettings()

    def test_selected_provider_needs_key(self, monkeypatch):
        """Every provider chosen for an agent must have its key configured."""
        monkeypatch.delenv("LLM_GOOGLE_API_KEY", raising=False)
        monkeypatch.setenv("LLM_SQL_PROVIDER", "google")

        with pytest.raises(ValidationError, match="LLM_GOOGLE_API_KEY"):
            LLMSettings()

    def test_per_agent_provider(self, monkeypatch):
        monkeypatch.setenv("LLM_GOOGLE_API_KEY", "google-test-key")
        monkeypatch.setenv("LLM_CORRECTOR_PROVIDER", "google")

        settings = LLMSettings()

        assert settings.corrector_provider == "google"
        assert settings.intent_provider is None

    def test_temperature_validation(self, monkeypatch):
        """Temperature must be between 0.0 and 2.0."""
        monkeypatch.setenv("LLM_TEMPERATURE", "3.0")

        with pytest.raises(ValidationError, match="less than or equal to 2"):
            LLMSettings()


class TestDatabaseSettings:
    """Test target database configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_TYPE", raising=False)

        settings = DatabaseSettings()

        assert settings.db_type == "sqlserver"
        assert settings.url is None
        assert settings.command_timeout == 30
        assert settings.max_retry_attempts == 3
        assert settings.default_row_limit == 100

    def test_database_type_from_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_TYPE", "postgresql")

        assert DatabaseSettings().db_type == "postgresql"

    def test_unknown_database_type(self, monkeypatch):
        monkeypatch.setenv("DATABASE_TYPE", "oracle")

        with pytest.raises(ValidationError):
            DatabaseSettings()

    def test_blank_url_is_missing(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "   ")

        assert DatabaseSettings().url is None

    def test_url_from_environment(self, mock_database_url):
        assert DatabaseSettings().url == mock_database_url

    def test_retry_attempts_bounds(self, monkeypatch):
        monkeypatch.setenv("DATABASE_MAX_RETRY_ATTEMPTS", "0")

        with pytest.raises(ValidationError):
            DatabaseSettings()


class TestChromaSettings:
    """Test vector store configuration."""

    def test_persist_dir_created_if_not_exists(self, tmp_path, monkeypatch):
        target = tmp_path / "nested" / "chroma"
        monkeypatch.setenv("CHROMA_PERSIST_DIR", str(target))

        settings = ChromaSettings()

        assert target.exists()
        assert settings.persist_dir == target.resolve()

    def test_collection_naming_defaults(self):
        settings = ChromaSettings()

        assert settings.collection_prefix == "schema"
        assert settings.default_namespace == "default"


class TestRetrievalAndResilienceSettings:
    def test_retrieval_defaults(self):
        settings = RetrievalSettings()

        assert settings.top_k == 5
        assert settings.min_score == 0.3
        assert settings.max_context_tables == 10
        assert settings.index_batch_size == 10

    def test_min_score_bounds(self, monkeypatch):
        monkeypatch.setenv("RAG_MIN_SCORE", "1.5")

        with pytest.raises(ValidationError):
            RetrievalSettings()

    def test_resilience_defaults(self):
        settings = ResilienceSettings()

        assert settings.circuit_failure_threshold == 5
        assert settings.circuit_reset_seconds == 60
        assert settings.max_self_correction_attempts == 3

    def test_correction_attempts_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("RESILIENCE_MAX_SELF_CORRECTION_ATTEMPTS", "0")

        with pytest.raises(ValidationError):
            ResilienceSettings()


class TestLoggingSettings:
    """Test logging configuration."""

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "VERBOSE")

        with pytest.raises(ValidationError):
            LoggingSettings()

    def test_configure_logging_with_file(self, tmp_path, monkeypatch):
        log_file = tmp_path / "logs" / "sqlagent.log"
        monkeypatch.setenv("LOG_FILE", str(log_file))
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        LoggingSettings().configure()

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
        assert log_file.parent.exists()


class TestSettings:
    """Test the composed settings object."""

    def test_nested_settings(self, monkeypatch):
        monkeypatch.setenv("DATABASE_TYPE", "sqlite")
        monkeypatch.setenv("RAG_TOP_K", "8")

        settings = Settings()

        assert settings.database.db_type == "sqlite"
        assert settings.retrieval.top_k == 8
        assert settings.llm.openai_api_key.startswith("sk-")
        assert settings.is_production is False

    def test_production_environment(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")

        assert Settings().is_production is True

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()

    def test_clear_settings_cache(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("RAG_TOP_K", "9")

        clear_settings_cache()
        second = get_settings()

        assert second is not first
        assert second.retrieval.top_k == 9
