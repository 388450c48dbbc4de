# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Process-level settings. Business rules that admins edit live in the Configuration row."""

    environment: str = Field(default="development", description="development|staging|production")
    is_testing: bool = False  # Set to True when running tests

    database_url: str = Field(
        default="sqlite:///./cleanops.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    redis_url: str = "redis://localhost:6379"

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")
    stripe_max_network_retries: int = Field(default=1, ge=0)

    # Scheduling
    business_timezone: str = Field(
        default="America/New_York",
        description="Timezone that booking dates and wall-clock times are expressed in",
    )
    recurrence_horizon_months: int = Field(
        default=12, ge=1, description="How far ahead recurring series are materialized"
    )
    recurrence_shift_time_of_day: bool = Field(
        default=True,
        description="Whether a series reconcile copies the edited booking's time-of-day downstream",
    )
    hold_sweep_interval_minutes: int = Field(default=30, ge=1, le=59)

    # Defaults for the Configuration singleton when it is first created
    default_cancellation_window_hours: int = Field(default=24, ge=0)
    default_cancellation_fee: float = Field(default=50.0, ge=0)
    default_payment_hold_delay_hours: Optional[int] = Field(default=None, gt=0)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("business_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())


settings = Settings()
