"""
Centralized configuration management for the policy scraper.
Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ========================================================================
    # Application Configuration
    # ========================================================================
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # ========================================================================
    # HTTP Fetcher Configuration
    # ========================================================================
    http_timeout: float = Field(default=45.0, alias="HTTP_TIMEOUT")
    pdf_timeout: float = Field(default=60.0, alias="PDF_TIMEOUT")
    boarddocs_timeout: float = Field(default=25.0, alias="BOARDDOCS_TIMEOUT")
    max_redirects: int = Field(default=10, alias="MAX_REDIRECTS")
    max_retries: int = Field(default=2, alias="MAX_RETRIES")
    retry_backoff_seconds: float = Field(default=0.3, alias="RETRY_BACKOFF_SECONDS")
    browser_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
        ),
        alias="BROWSER_USER_AGENT",
    )

    # ========================================================================
    # Concurrency Configuration
    # ========================================================================
    default_concurrency: int = Field(default=6, alias="DEFAULT_CONCURRENCY")
    pdf_concurrency: int = Field(default=4, alias="PDF_CONCURRENCY")
    max_concurrency: int = Field(default=12, alias="MAX_CONCURRENCY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Ensure environment is valid."""
        valid_envs = {"development", "production", "testing"}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v.lower()

    @field_validator("max_redirects", "max_retries")
    @classmethod
    def validate_non_negative(cls, v):
        """Retry and redirect budgets cannot be negative."""
        if v < 0:
            raise ValueError("retry and redirect limits must be >= 0")
        return v

    @field_validator("default_concurrency", "pdf_concurrency", "max_concurrency")
    @classmethod
    def validate_concurrency(cls, v):
        """Concurrency limits must allow at least one worker."""
        if v < 1:
            raise ValueError("concurrency limits must be >= 1")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Returns:
        Settings: Application configuration object
    """
    return Settings()


# Convenience access
settings = get_settings()


# ============================================================================
# Path Configuration
# ============================================================================

PROJECT_ROOT = Path(__file__).parent.parent
LOGS_DIR = PROJECT_ROOT / "logs"
