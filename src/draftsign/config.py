"""
Configuration management for DraftSign.

Loads settings from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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
    debug: bool = True
    log_level: str = "INFO"

    # ==========================================================================
    # LLM API Keys
    # ==========================================================================
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key for GPT-4o")

    # ==========================================================================
    # LLM Configuration
    # ==========================================================================
    primary_llm_model: str = "claude-sonnet-4-20250514"
    primary_llm_provider: Literal["anthropic", "openai"] = "anthropic"
    fallback_llm_model: str = "gpt-4o"
    fallback_llm_provider: Literal["anthropic", "openai"] = "openai"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4096
    llm_timeout: int = 60

    # ==========================================================================
    # Storage
    # ==========================================================================
    storage_backend: Literal["postgres", "memory"] = "postgres"

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "draftsign"
    postgres_password: str = "draftsign_dev_password"
    postgres_db: str = "draftsign"
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
    # Redis (drafting sequence numbers)
    # ==========================================================================
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = False

    # ==========================================================================
    # SMTP
    # ==========================================================================
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_sender: str = "noreply@draftsign.local"
    company_name: str = "DraftSign"

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    public_base_url: str = "http://localhost:3000"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("public_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Signing links are built by appending a path."""
        return v.rstrip("/") if isinstance(v, str) else v

    # ==========================================================================
    # Signing
    # ==========================================================================
    signing_token_ttl_hours: int = Field(default=72, ge=1)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
