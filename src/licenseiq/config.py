"""
Configuration management for LicenseIQ.

Loads settings from environment variables with sensible defaults.
"""

import logging
from functools import lru_cache
from typing import Literal

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LLMProvider = Literal["anthropic", "openai", "groq"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # LLM API Keys
    # ==========================================================================
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    groq_api_key: str = Field(default="", description="Groq API key")
    groq_base_url: str = "https://api.groq.com/openai/v1"

    # ==========================================================================
    # LLM Configuration
    # ==========================================================================
    primary_llm_provider: LLMProvider = "groq"
    primary_llm_model: str = "llama-3.3-70b-versatile"
    fallback_llm_provider: LLMProvider = "anthropic"
    fallback_llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 2000
    llm_timeout: int = 60

    # ==========================================================================
    # PostgreSQL
    # ==========================================================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "licenseiq"
    postgres_password: str = "licenseiq_dev_password"
    postgres_db: str = "licenseiq"
    database_url: str | None = None

    @property
    def postgres_url(self) -> str:
        """Get PostgreSQL connection URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5000"])

    # ==========================================================================
    # Rule Synthesis
    # ==========================================================================
    # Rules at or above this confidence are stored validated and active
    confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    # Discount applied to rules inferred from general contract context
    context_confidence_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    context_entity_limit: int = Field(default=20, ge=1)

    entity_temperature: float = 0.1
    entity_max_tokens: int = 1500
    context_temperature: float = 0.2
    context_max_tokens: int = 2000

    formula_max_depth: int = Field(default=32, ge=1)
    synthesis_abort_on_persist_error: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case log level names."""
        return v.upper() if isinstance(v, str) else v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog to filter below the given (or configured) level."""
    level_name = (level or get_settings().log_level).upper()
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
    )
