from decimal import Decimal
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Nosh Farmaiye API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str = "sqlite:///./nosh.db"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Admin bootstrap (used by app.db.init_db)
    DEFAULT_ADMIN_EMAIL: str = "admin@noshfarmaiye.in"
    DEFAULT_ADMIN_PASSWORD: str = ""

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    PAYMENT_PROVIDER_MAX_RETRIES: int = Field(default=1, ge=0)

    # Pricing
    CURRENCY: str = "INR"
    DELIVERY_FEE: Decimal = Field(default=Decimal("0"), ge=0)
    # Stripe refuses expiries under 30 minutes or over 24 hours.
    CHECKOUT_SESSION_EXPIRY_MINUTES: int = Field(default=45, ge=30, le=1440)
    ABANDONED_CHECKOUT_MINUTES: int = Field(default=60, ge=30)

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:5173"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("CURRENCY")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3:
            raise ValueError("CURRENCY must be a 3-letter ISO code")
        return normalized

    @field_validator("FRONTEND_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_checkout_windows(self):
        if self.ABANDONED_CHECKOUT_MINUTES < self.CHECKOUT_SESSION_EXPIRY_MINUTES:
            raise ValueError("ABANDONED_CHECKOUT_MINUTES must not be shorter than CHECKOUT_SESSION_EXPIRY_MINUTES")
        return self

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if self.STRIPE_SECRET_KEY.startswith("sk_test_"):
                raise ValueError("STRIPE_SECRET_KEY must use a live key in production")
        return self

    @property
    def stripe_configured(self) -> bool:
        key = (self.STRIPE_SECRET_KEY or "").strip()
        return key.startswith("sk_") and "placeholder" not in key.lower()

    @property
    def currency_code(self) -> str:
        """Lower-case currency code as the payment provider expects it."""
        return self.CURRENCY.lower()

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
