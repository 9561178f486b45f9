"""
Application Settings for Storefront Billing

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The dunning policy (max attempts, retry schedule, grace period) is read
    once at process start and converted into an immutable DunningConfig
    by ``get_dunning_config``.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    app_url: str = "http://localhost:3000"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # SendGrid Configuration
    sendgrid_api_key: Optional[str] = None
    email_from: str = "billing@example.com"

    # Shared secret for the batch trigger (cron) endpoints
    cron_secret_key: Optional[str] = None

    # Dunning policy
    dunning_max_attempts: int = 4
    dunning_retry_schedule: list[int] = [1, 3, 5, 7]  # days from the original failure
    dunning_grace_period_days: int = 3

    # Gifts
    gift_expiry_days: int = 90

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_dunning_policy(self) -> "Settings":
        """Retry schedule must have one offset per allowed attempt."""
        if self.dunning_max_attempts < 1:
            raise ValueError("DUNNING_MAX_ATTEMPTS must be at least 1")

        if len(self.dunning_retry_schedule) != self.dunning_max_attempts:
            raise ValueError(
                "DUNNING_RETRY_SCHEDULE must contain exactly "
                f"{self.dunning_max_attempts} day offsets"
            )

        if self.dunning_grace_period_days < 0:
            raise ValueError("DUNNING_GRACE_PERIOD_DAYS cannot be negative")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
