# backend/bookingflow/core/config.py
import logging
import os
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    """
    Process-wide configuration, built once at startup and read-only thereafter.

    Adapters receive this object (or the values they need) through their
    constructors; business logic never reads the environment directly.
    """

    environment: str = Field(default="development", description="Deployment environment")
    database_url: str = Field(
        default="sqlite:///./bookingflow.db",
        description="SQLAlchemy database URL",
    )

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the checkout webhook endpoint",
    )
    stripe_currency: str = Field(default="gbp", description="Default currency for payments")
    checkout_session_expiry_minutes: int = Field(
        default=30,
        description="Lifetime of a hosted checkout session (Stripe accepts 30 to 1440)",
    )
    checkout_product_name: str = Field(
        default="Practitioner Booking", description="Line item name shown on checkout"
    )
    public_base_url: str = Field(
        default="http://localhost:3000",
        description="Frontend origin used for checkout success/cancel redirects",
    )

    # Cal.com Configuration
    calcom_api_key: SecretStr = Field(
        default=SecretStr(""), description="Cal.com API key (v1 API)"
    )
    calcom_api_url: str = Field(default="https://api.cal.com/v1", description="Cal.com base URL")
    calcom_user_id: str = Field(
        default="", description="Shared Cal.com account id that owns every event type"
    )
    calcom_event_types: Dict[str, str] = Field(
        default_factory=dict,
        description="JSON object mapping practitioner id to Cal.com event type id",
    )
    calcom_timeout_seconds: float = Field(default=5.0, description="Cal.com request timeout")

    # Slot grid
    business_timezone: str = Field(default="Europe/London")
    slot_start_hours: List[int] = Field(default_factory=lambda: [9, 11, 13, 15, 17])
    slot_duration_minutes: int = Field(default=60)
    availability_window_days: int = Field(default=14)

    calendar_retry_max_attempts: int = Field(
        default=5, description="Attempts before a calendar sync task is marked failed"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("checkout_session_expiry_minutes")
    @classmethod
    def _validate_checkout_expiry(cls, value: int) -> int:
        if value < 30 or value > 1440:
            raise ValueError("checkout_session_expiry_minutes must be between 30 and 1440")
        return value

    @field_validator("slot_start_hours")
    @classmethod
    def _validate_slot_hours(cls, value: List[int]) -> List[int]:
        for hour in value:
            if hour < 0 or hour > 23:
                raise ValueError(f"slot start hour out of range: {hour}")
        return sorted(set(value))

    @field_validator("calcom_event_types", mode="before")
    @classmethod
    def _normalize_event_types(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())

    @property
    def calcom_enabled(self) -> bool:
        return bool(self.calcom_api_key.get_secret_value() and self.calcom_user_id)

    def get_database_url(self) -> str:
        return self.database_url


settings = Settings()
logger.info(
    "[CONFIG] environment=%s stripe_enabled=%s calcom_enabled=%s",
    settings.environment,
    settings.stripe_enabled,
    settings.calcom_enabled,
)
