"""
Centralized settings using Pydantic.

All environment variables are read once and validated.
Use this instead of scattered os.getenv() calls throughout the codebase.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from formextract.core.config import (
    DEFAULT_EXTRACTION_CONCURRENCY,
    DEFAULT_EXTRACTOR_MODEL,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    EXTRACTOR_TIMEOUT_SECONDS,
    MAX_RETRIES,
)


class Settings(BaseSettings):
    """Extractor endpoint, concurrency and logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FORMEXTRACT_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    EXTRACTOR_BASE_URL: str = Field(default="https://api.openai.com/v1")
    EXTRACTOR_API_KEY: SecretStr | None = None
    EXTRACTOR_MODEL: str = Field(default=DEFAULT_EXTRACTOR_MODEL)
    EXTRACTOR_TIMEOUT_SECONDS: float = Field(default=EXTRACTOR_TIMEOUT_SECONDS)
    EXTRACTOR_MAX_TOKENS: int = Field(default=DEFAULT_MAX_TOKENS)
    EXTRACTOR_TEMPERATURE: float = Field(default=DEFAULT_TEMPERATURE)
    EXTRACTOR_VERIFY_SSL: bool = True
    EXTRACTOR_MAX_ATTEMPTS: int = Field(default=MAX_RETRIES)

    CONCURRENCY: int = Field(default=DEFAULT_EXTRACTION_CONCURRENCY, ge=1)

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
