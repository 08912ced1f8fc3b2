import json
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _split_origins(raw: str | None) -> List[str]:
    """CORS_ORIGINS as "a,b" or a JSON list; blank means the local dev defaults."""
    raw = (raw or "").strip()
    items = json.loads(raw) if raw.startswith("[") else raw.split(",")
    origins = [o.strip() for o in items if isinstance(o, str) and o.strip()]
    return origins or list(_DEFAULT_CORS)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # Persistence: "mongo" or "memory"
    store_backend: Literal["mongo", "memory"] = Field(default="mongo", alias="STORE_BACKEND")
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="fastdeal", alias="MONGODB_DB_NAME")

    # Redis (ARQ sweep worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    sweep_interval_minutes: int = Field(default=5, alias="SWEEP_INTERVAL_MINUTES")

    # Public URLs used in gateway callbacks
    frontend_url: str = Field(default="http://localhost:3000", alias="FRONTEND_URL")
    backend_url: str = Field(default="http://localhost:8000", alias="BACKEND_URL")

    # Payments
    payment_expiry_minutes: int = Field(default=30, alias="PAYMENT_EXPIRY_MINUTES")
    platform_fee_percent: float = Field(default=0.0, alias="PLATFORM_FEE_PERCENT")
    purge_expired_payments: bool = Field(default=True, alias="PURGE_EXPIRED_PAYMENTS")
    gateway_timeout_seconds: float = Field(default=20.0, alias="GATEWAY_TIMEOUT_SECONDS")

    # Card processor (Stripe API)
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_api_url: str = Field(default="https://api.stripe.com", alias="STRIPE_API_URL")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")

    # Orange Money
    orange_money_api_url: str = Field(default="", alias="ORANGE_MONEY_API_URL")
    orange_money_client_id: str = Field(default="", alias="ORANGE_MONEY_CLIENT_ID")
    orange_money_client_secret: str = Field(default="", alias="ORANGE_MONEY_CLIENT_SECRET")
    orange_money_merchant_code: str = Field(default="", alias="ORANGE_MONEY_MERCHANT_CODE")

    # MTN Mobile Money
    mtn_money_api_url: str = Field(default="", alias="MTN_MONEY_API_URL")
    mtn_money_subscription_key: str = Field(default="", alias="MTN_MONEY_SUBSCRIPTION_KEY")
    mtn_money_user_id: str = Field(default="", alias="MTN_MONEY_USER_ID")
    mtn_money_api_key: str = Field(default="", alias="MTN_MONEY_API_KEY")
    mtn_money_environment: str = Field(default="sandbox", alias="MTN_MONEY_ENVIRONMENT")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _split_origins(self.cors_origins_raw)


@lru_cache
def get_settings() -> Settings:
    return Settings()
