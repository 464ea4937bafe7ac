"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Any

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_BACKENDS = ("postgres", "memory")

# Hard ceiling on vote duration, also enforced by the active_votes CHECK constraint
VOTE_DURATION_CEILING_MINUTES = 30 * 24 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "StarVote"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False  # JSON output is always on in production

    # Storage backend: "postgres" for deployments, "memory" for single-node/dev
    STORE_BACKEND: str = "postgres"

    # Database - PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "starvote"
    POSTGRES_PASSWORD: str = ""  # Required when STORE_BACKEND is "postgres"
    POSTGRES_DB: str = "starvote"
    POSTGRES_SSL: bool = True
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Upper bound for any lock wait inside a store transaction
    STORE_LOCK_TIMEOUT_MS: int = 5000

    # Vote rules
    MAX_ACTIVE_VOTES_PER_USER: int = 30
    ARCHIVE_RETENTION_DAYS: int = 30
    MAX_VOTE_DURATION_MINUTES: int = VOTE_DURATION_CEILING_MINUTES

    # Background jobs
    LIFECYCLE_SWEEP_INTERVAL_SECONDS: int = 60
    ARCHIVE_CLEANUP_INTERVAL_SECONDS: int = 60
    RUN_SWEEP_ON_STARTUP: bool = True

    @field_validator("STORE_BACKEND")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Only known store implementations can be selected."""
        v = v.lower()
        if v not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        return v

    @field_validator(
        "MAX_ACTIVE_VOTES_PER_USER",
        "ARCHIVE_RETENTION_DAYS",
        "LIFECYCLE_SWEEP_INTERVAL_SECONDS",
        "ARCHIVE_CLEANUP_INTERVAL_SECONDS",
    )
    @classmethod
    def validate_positive(cls, v: int, info: Any) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("MAX_VOTE_DURATION_MINUTES")
    @classmethod
    def validate_max_duration(cls, v: int) -> int:
        """Durations may be shortened but never raised above the storage ceiling."""
        if not 0 < v <= VOTE_DURATION_CEILING_MINUTES:
            raise ValueError(
                f"MAX_VOTE_DURATION_MINUTES must be between 1 and {VOTE_DURATION_CEILING_MINUTES}"
            )
        return v

    @model_validator(mode="after")
    def validate_required_secrets(self) -> "Settings":
        """Validate that the database password is set when PostgreSQL is used."""
        if self.STORE_BACKEND == "postgres" and not self.POSTGRES_PASSWORD:
            raise ValueError("POSTGRES_PASSWORD must be set in environment")
        return self

    @property
    def POSTGRES_URL(self) -> str:
        """Construct PostgreSQL connection URL for the asyncpg driver."""
        url = (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )
        return f"{url}?ssl=require" if self.POSTGRES_SSL else url

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
