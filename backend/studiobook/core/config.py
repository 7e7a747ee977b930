# backend/studiobook/core/config.py
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

load_dotenv()


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


class Settings(BaseSettings):
    """Runtime configuration for the studio booking core."""

    environment: str = Field(default="development", description="Deployment environment name")
    studio_name: str = Field(default="Studio", description="Display name used in gateway metadata")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./studiobook.db",
        description="SQLAlchemy URL for the booking database",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements to the log")

    # Locks
    redis_url: str = Field(
        default="",
        description="Redis URL for cross-process booking locks (empty uses in-process locks)",
    )
    booking_lock_ttl_seconds: int = Field(
        default=90, ge=1, description="Expiry applied to per-booking mutex keys"
    )
    lock_namespace: str = Field(default="studiobook", description="Prefix for lock keys")

    # Auth
    secret_key: SecretStr = Field(
        default=SecretStr("change-me-in-production"),
        description="HS256 key used to verify bearer tokens",
    )
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, ge=1)

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the payment_intent webhook endpoint",
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")
    stripe_timeout_seconds: int = Field(
        default=8, ge=1, description="Overall timeout applied to every gateway request"
    )
    stripe_max_network_retries: int = Field(default=1, ge=0)

    # Studio calendar
    studio_timezone: str = Field(
        default="America/New_York", description="Zone used to interpret studio opening hours"
    )
    studio_open_hour: int = Field(default=9, ge=0, le=23)
    studio_close_hour: int = Field(
        default=21,
        ge=0,
        le=24,
        description="Closing hour; values at or below the open hour roll past midnight",
    )
    calendar_step_minutes: int = Field(default=30, ge=5)
    consultation_duration_minutes: int = Field(default=15, ge=5)
    min_manual_range_minutes: int = Field(default=60, ge=1)

    default_engineer_id: Optional[str] = Field(default=None)
    default_producer_name: str = Field(default="Studio Producer")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return (value or "usd").strip().lower()

    @field_validator("studio_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        import pytz

        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown studio timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _warn_missing_stripe(self) -> "Settings":
        if not self.stripe_secret_key.get_secret_value() and self.environment == "production":
            logger.warning("STRIPE_SECRET_KEY is empty in production; payment calls will fail")
        return self


settings = Settings()
