"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./dealforge.db"

    # Redis (Celery broker and result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Object storage
    storage_dir: Path = Path("./storage")
    storage_signing_secret: str = "change-me"
    presigned_url_ttl_seconds: int = 3600

    # Generative service
    openai_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 4096

    # Application
    debug: bool = False
    log_level: str = "INFO"

    # Pipeline
    max_compliance_cycles: int = 3
    retry_max_retries: int = 2
    # A processing deal whose claim is older than this lost its worker
    pipeline_claim_timeout_seconds: int = 1800

    # Rate limiting ("memory://" or a redis:// URI shared by every API process)
    rate_limit_storage_uri: str = "memory://"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
