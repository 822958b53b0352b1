# app/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if required config is missing.

Lifecycle policy constants (listing durations, retention window) are NOT
settings: they live in app.constants so there is a single source of truth.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        ...,
        description="PostgreSQL connection URL",
    )

    # Authentication
    ADMIN_API_KEY: str = Field(
        ...,
        description="API key for admin endpoints",
    )
    CRON_SECRET: str | None = Field(
        default=None,
        description="Shared secret the external scheduler sends to cron endpoints",
    )

    # Application
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level",
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit single-line JSON logs (False for human-readable local logs)",
    )

    # Sweeps
    SWEEP_PAGE_SIZE: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Listings fetched and evaluated per page during a sweep",
    )
    SWEEP_TIME_BUDGET_SECONDS: float = Field(
        default=25.0,
        gt=0,
        description="Wall-clock budget for a single sweep invocation",
    )
    SWEEP_MAX_REPORTED_ERRORS: int = Field(
        default=20,
        ge=0,
        description="Max per-listing errors included in a sweep summary",
    )
    SWEEP_APPLY_RESTORATIONS: bool = Field(
        default=False,
        description="Apply restore_to_active verdicts during sweeps (otherwise report them as skipped)",
    )

    # Store retries
    STORE_RETRY_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        description="Attempts for a store write before it is reported as failed",
    )
    STORE_RETRY_BASE_DELAY: float = Field(
        default=0.5,
        ge=0,
        description="Base delay (seconds) for exponential backoff between store retries",
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
