from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


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

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="contactvault", alias="MONGODB_DB_NAME")

    # Google sign-in (hosted identity provider)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")

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
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Pricing (credits): one credit = one contact creation
    credit_unit_price: int = Field(default=200, gt=0, alias="CREDIT_UNIT_PRICE")  # minor units
    payment_currency: str = Field(default="eur", alias="PAYMENT_CURRENCY")

    # Timeouts and retry for store / provider calls
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")
    provider_timeout_seconds: float = Field(default=15.0, alias="PROVIDER_TIMEOUT_SECONDS")
    retry_attempts: int = Field(default=3, ge=1, alias="RETRY_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=0.2, ge=0, alias="RETRY_BASE_DELAY_SECONDS")
    retry_max_delay_seconds: float = Field(default=2.0, ge=0, alias="RETRY_MAX_DELAY_SECONDS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
