from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    POSTGRES_USER: str = "club"
    POSTGRES_PASSWORD: str = "club"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "club"
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False
    DB_STATEMENT_TIMEOUT_SECONDS: float = 10.0

    # Redis (queue, real-time notifier, cache)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_QUEUE_DB: int = 0
    REDIS_CACHE_DB: int = 1
    REDIS_CACHE_ENABLED: bool = True
    QUEUE_KEY_PREFIX: str = "club:queue"
    TRACKS_CACHE_TTL: int = 120

    # Billing engine
    BILLING_API_URL: str = "https://billing.example.com/api/v2"
    BILLING_API_KEY: Optional[str] = None
    BILLING_TIMEOUT_SECONDS: float = 20.0

    # Storefront / catalog
    STOREFRONT_API_URL: str = "https://storefront.example.com/admin/api/2024-01"
    STOREFRONT_ACCESS_TOKEN: Optional[str] = None
    STOREFRONT_TIMEOUT_SECONDS: float = 15.0
    MEMBERSHIP_TAG: str = "club-active-member"

    # Business rules
    REFERENCE_TIMEZONE: str = "America/Denver"
    INVENTORY_STOP_QUANTITY: int = 0
    SWAP_FOR_CREDIT_PRODUCT_ID: Optional[int] = None
    DOMESTIC_COUNTRY_NAME: str = "United States"
    DOMESTIC_COUNTRY_CODE: str = "US"
    DOMESTIC_PLAN_MARKER: str = "-usa"
    INTERNATIONAL_PLAN_MARKER: str = "-international"
    NEW_CUSTOMER_PLAN_MARKER: str = "-new"
    GIFT_COUPON_ID: Optional[str] = None
    PROMO_COUPON_MARKER: str = "PROMO"
    CHECKOUT_OFFER_REGULAR: Optional[str] = None
    GIFT_BRIDGE_6_MONTHS: Optional[str] = None
    GIFT_BRIDGE_12_MONTHS: Optional[str] = None
    BRIDGE_WINDOW_DAYS_BEFORE_MONTH_END: int = 1
    BRIDGE_WINDOW_DAYS_AFTER_MONTH_START: int = 2
    TRACK_ALIASES: Dict[str, str] = Field(
        default_factory=lambda: {"rap": "hiphop", "hip-hop": "hiphop", "hip hop": "hiphop"}
    )

    # Side effects
    DASHBOARD_CHANNEL: str = "swaps-dashboard"
    JOB_DEFAULT_PRIORITY: int = 5
    DISPATCH_MAX_ATTEMPTS: int = 3
    DISPATCH_RETRY_DELAY_SECONDS: float = 0.5

    # HTTP surface
    WEB_SERVER_HOST: str = "0.0.0.0"
    WEB_SERVER_PORT: int = 8080

    LOG_LEVEL: str = "INFO"

    @field_validator("TRACK_ALIASES", mode="after")
    @classmethod
    def normalize_aliases(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {k.strip().lower(): val.strip().lower() for k, val in v.items()}

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
