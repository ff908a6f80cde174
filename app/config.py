from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
from decimal import Decimal
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./affiliates.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Affiliate Settlement Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SCHEDULER_ENABLED: bool = True

    # Payouts
    MINIMUM_PAYOUT_AMOUNT: Decimal = Decimal("50")
    INVOICE_DUE_DAYS: int = 30
    # Payment methods that require a formal invoice.
    # Accepts JSON string, comma-separated, or list
    INVOICE_PAYMENT_METHODS: list[str] = ["bank_transfer", "wire_transfer", "ach"]
    # Key inside partner.contact_info holding the payment-rail account id
    PAYOUT_ACCOUNT_METADATA_KEY: str = "payout_account_id"

    # Razorpay (payment rail for partner transfers)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    PAYMENT_RAIL_TIMEOUT_SECONDS: int = 30

    # Scheduler
    SCHEDULER_TIMEZONE: str = "UTC"
    SETTLEMENT_CRON_HOUR: int = 2  # Daily commission settlement at 02:00
    PAYOUT_SWEEP_CRON_HOUR: int = 2  # Daily payout sweep at 02:30
    PAYOUT_SWEEP_CRON_MINUTE: int = 30
    JOB_LOCK_TTL_MINUTES: int = 120  # Lock expiry so a crashed run doesn't block forever
    STALE_BATCH_HOURS: int = 6  # PROCESSING batches older than this are abandoned

    @field_validator('INVOICE_PAYMENT_METHODS', mode='before')
    @classmethod
    def parse_invoice_methods(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [method.strip() for method in v.split(',')]
        return v

    @field_validator('INVOICE_PAYMENT_METHODS')
    @classmethod
    def lowercase_invoice_methods(cls, v):
        return [method.lower() for method in v]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
