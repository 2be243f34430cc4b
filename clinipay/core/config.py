# clinipay/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_COMMISSION_PERCENTAGE,
    DEFAULT_PAYOUT_BATCH_SIZE,
    MAX_COMMISSION_PERCENTAGE,
    MIN_COMMISSION_PERCENTAGE,
)

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """True inside a pytest run (pytest exports PYTEST_CURRENT_TEST per test)."""
    return "PYTEST_CURRENT_TEST" in os.environ


_IN_CI = bool(os.getenv("CI"))
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"

if not _IN_CI and ENV_FILE.exists():
    load_dotenv(ENV_FILE)
    logger.debug("Loaded environment overrides from %s", ENV_FILE)


class Settings(BaseSettings):
    secret_key: SecretStr = Field(
        default=SecretStr("dev-only-secret-key-change-me"),
        description="HMAC key used to sign and verify bearer tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 12

    database_url: str = Field(
        default="sqlite:///./clinipay.db",
        description="SQLAlchemy database URL",
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Cache and Celery broker")

    # Disables Redis and runs Celery tasks eagerly
    is_testing: bool = False

    # Receipts and payout notices
    email_provider: Literal["console", "resend"] = Field(
        default="console",
        alias="EMAIL_PROVIDER",
        description="console logs messages, resend delivers them",
    )
    resend_api_key: Optional[str] = Field(
        default=None,
        alias="RESEND_API_KEY",
        description="Required when EMAIL_PROVIDER=resend",
    )
    from_email: str = "MediBook <appointments@medibook.health>"

    frontend_url: str = "http://localhost:3000"

    # Stripe
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Server-side Stripe API key; empty disables provider calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the Stripe webhook endpoint",
    )
    stripe_currency: str = Field(default="usd", description="ISO currency for every charge")
    stripe_connect_country: str = Field(
        default="US", description="Country used when creating doctor connected accounts"
    )
    webhook_processing_timeout_seconds: int = Field(
        default=300,
        gt=0,
        description="Seconds after which a webhook claim left in processing may be taken over",
    )

    # Commission
    default_commission_percentage: float = Field(
        default=DEFAULT_COMMISSION_PERCENTAGE,
        description="Commission applied until an admin sets one",
    )
    commission_min_percentage: float = Field(default=MIN_COMMISSION_PERCENTAGE)
    commission_max_percentage: float = Field(default=MAX_COMMISSION_PERCENTAGE)
    commission_cache_ttl_seconds: int = Field(
        default=60, ge=0, description="TTL for the cached commission percentage"
    )

    # Payouts
    payout_hold_hours: float = Field(
        default=2.0,
        gt=0,
        description="Hours after the appointment ends before the doctor payout is released",
    )
    payout_batch_size: int = Field(default=DEFAULT_PAYOUT_BATCH_SIZE, gt=0)
    cron_secret: SecretStr = Field(
        default=SecretStr(""),
        alias="CRON_SECRET",
        description="Bearer token required by the payout cron endpoint when set",
    )

    model_config = SettingsConfigDict(
        env_file=None if _IN_CI else ENV_FILE,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("stripe_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def _check_commission_bounds(self) -> "Settings":
        if self.commission_min_percentage > self.commission_max_percentage:
            raise ValueError("commission_min_percentage must not exceed commission_max_percentage")
        if not (
            self.commission_min_percentage
            <= self.default_commission_percentage
            <= self.commission_max_percentage
        ):
            raise ValueError("default_commission_percentage must lie within the commission bounds")
        return self

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())


settings = Settings()
