"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from sqlagent.config import get_settings

    settings = get_settings()
    print(settings.llm.default_provider)
    print(settings.database.url)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["openai", "google"]
DatabaseType = Literal["sqlserver", "postgresql", "mysql", "sqlite"]


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    # Provider selection
    default_provider: ProviderName = Field(default="openai", description="Default LLM provider")
    intent_provider: ProviderName | None = Field(
        None, description="Provider for IntentExtractor (defaults to default_provider)"
    )
    sql_provider: ProviderName | None = Field(
        None, description="Provider for SqlGenerator (defaults to default_provider)"
    )
    corrector_provider: ProviderName | None = Field(
        None, description="Provider for SqlCorrector (defaults to default_provider)"
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(None, description="OpenAI API key", min_length=20)
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI chat model")

    # Google configuration
    google_api_key: str | None = Field(None, description="Google AI API key")
    google_model: str = Field(default="gemini-2.5-flash", description="Gemini chat model")

    # Common settings
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses (low = near-deterministic SQL)",
    )
    max_tokens: int = Field(
        default=2000,
        gt=0,
        le=16000,
        description="Maximum tokens per LLM response",
    )
    timeout: int = Field(default=30, gt=0, description="Request timeout in seconds")
    rate_limit_cooldown: int = Field(
        default=60,
        gt=0,
        description="Seconds to wait after a provider rate-limit response",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v

    @model_validator(mode="after")
    def validate_provider_keys(self) -> "LLMSettings":
        """Ensure API key is set for selected providers."""
        provider_key_map = {
            "openai": self.openai_api_key,
            "google": self.google_api_key,
        }

        selected_providers = {
            self.default_provider,
            self.intent_provider,
            self.sql_provider,
            self.corrector_provider,
        }

        for provider in selected_providers:
            if provider in provider_key_map and not provider_key_map[provider]:
                raise ValueError(
                    f"API key required for {provider} provider. Set LLM_{provider.upper()}_API_KEY"
                )

        return self


class EmbeddingSettings(BaseSettings):
    """Embedding provider configuration."""

    provider: ProviderName = Field(default="openai", description="Embedding provider")
    openai_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    google_model: str = Field(
        default="models/text-embedding-004", description="Google embedding model"
    )

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        env_file=".env",
        extra="ignore",
    )


class DatabaseSettings(BaseSettings):
    """Target database configuration."""

    db_type: DatabaseType = Field(
        default="sqlserver",
        description="Target database engine (selects the schema introspector).",
        validation_alias="DATABASE_TYPE",
    )
    url: str | None = Field(
        None,
        description="Target database connection URL or ODBC connection string",
    )
    command_timeout: int = Field(
        default=30,
        gt=0,
        description="Per-statement execution timeout in seconds",
    )
    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Re-runs of a statement after a transient engine error",
    )
    default_row_limit: int = Field(
        default=100,
        gt=0,
        description="Row cap injected into non-aggregate queries",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | None) -> str | None:
        """Treat empty strings as missing."""
        if v is not None and not str(v).strip():
            return None
        return v


class ChromaSettings(BaseSettings):
    """Chroma vector store configuration."""

    persist_dir: Path = Field(
        default=Path("./chroma_data"),
        description="Directory for Chroma vector store persistence",
    )
    collection_prefix: str = Field(
        default="schema",
        description="Prefix for per-database schema collections",
    )
    default_namespace: str = Field(
        default="default",
        description="Namespace used when no database name can be derived",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHROMA_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("persist_dir")
    @classmethod
    def validate_persist_dir(cls, v: Path) -> Path:
        """Ensure persist directory exists."""
        v.mkdir(parents=True, exist_ok=True)
        return v.resolve()


class RetrievalSettings(BaseSettings):
    """Schema retrieval configuration."""

    top_k: int = Field(default=5, gt=0, le=50, description="Similarity matches per question")
    min_score: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Minimum similarity score for a match to count",
    )
    max_context_tables: int = Field(
        default=10,
        gt=0,
        description="Upper bound on tables placed into one question's context",
    )
    index_batch_size: int = Field(
        default=10,
        gt=0,
        le=500,
        description="Documents embedded per batch while indexing",
    )

    model_config = SettingsConfigDict(
        env_prefix="RAG_",
        env_file=".env",
        extra="ignore",
    )


class ResilienceSettings(BaseSettings):
    """Retry, circuit breaker and self-correction configuration."""

    circuit_failure_threshold: int = Field(
        default=5,
        gt=0,
        description="Consecutive connection failures before the circuit opens",
    )
    circuit_reset_seconds: int = Field(
        default=60,
        gt=0,
        description="Seconds an open circuit waits before allowing a retry",
    )
    wait_and_retry_seconds: int = Field(
        default=5,
        ge=0,
        description="Fixed delay for the wait-and-retry strategy",
    )
    max_self_correction_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum SQL executions per question (corrections = attempts - 1)",
    )

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        env_file=".env",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stderr only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Settings are nested by domain (llm, embeddings, database, chroma,
    retrieval, resilience, logging).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        LLM_*: LLM provider configuration (see LLMSettings)
        EMBEDDING_*: Embedding provider configuration (see EmbeddingSettings)
        DATABASE_*: Target database configuration (see DatabaseSettings)
        CHROMA_*: Vector store configuration (see ChromaSettings)
        RAG_*: Retrieval configuration (see RetrievalSettings)
        RESILIENCE_*: Retry and circuit breaker configuration
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.database.db_type
        'sqlserver'
        >>> settings.retrieval.top_k
        5
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(default="sqlagent", description="Application name")

    # Nested settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chroma: ChromaSettings = Field(default_factory=ChromaSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        """Configure logging when settings are loaded."""
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        """Log configuration on initialization."""
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name} ({self.environment})",
            extra={
                "environment": self.environment,
                "llm_provider": self.llm.default_provider,
                "database_type": self.database.db_type,
                "max_self_correction_attempts": self.resilience.max_self_correction_attempts,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("SQLAGENT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
