"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Server
    PORT: int = Field(default=8000, description="Port to bind to")

    # Database
    DATABASE_URL: str = Field(default="")

    # Redis
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # JWT Authentication (tokens are issued by the identity service)
    JWT_SECRET: str = Field(default="change-this-secret-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")

    # Paystack
    PAYSTACK_SECRET_KEY: str = Field(default="")
    PAYSTACK_PLAN_CODE_PRO: str = Field(default="")
    PAYSTACK_PLAN_CODE_BUSINESS: str = Field(default="")

    # Flutterwave
    FLUTTERWAVE_CLIENT_ID: str = Field(default="")
    FLUTTERWAVE_CLIENT_SECRET: str = Field(default="")
    FLW_SECRET_HASH: str = Field(default="")
    FLUTTERWAVE_WEBHOOK_SECRET_HASH: str = Field(default="")
    FLUTTERWAVE_SECRET_HASH: str = Field(default="")
    FLUTTERWAVE_PLAN_ID_PRO: str = Field(default="")
    FLUTTERWAVE_PLAN_ID_BUSINESS: str = Field(default="")

    # Stripe
    STRIPE_WEBHOOK_SECRET: str = Field(default="")
    STRIPE_SIGNATURE_TOLERANCE_SECONDS: int = Field(default=300)

    # Billing
    PAID_TRIAL_DAYS: Optional[str] = Field(
        default=None,
        description="Paid trial length in days, clamped to 1..31 (default 7)",
    )
    PAID_TRIAL_MULTIPLIER: Optional[str] = Field(
        default=None,
        description="Fraction of the monthly price charged for a trial (default 0.3)",
    )
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = Field(default=15.0)
    CHECKOUT_IDEMPOTENCY_TTL_SECONDS: int = Field(default=86400)

    # Rate limits (requests per minute per client IP)
    WEBHOOK_RATE_LIMIT_PER_MINUTE: int = Field(default=100)
    CHECKOUT_RATE_LIMIT_PER_MINUTE: int = Field(default=30)

    # App Configuration
    APP_NAME: str = Field(default="Billing Reconciler")
    APP_LOGO_URL: str = Field(default="")
    ALLOWED_ORIGINS: str = Field(default="http://localhost:3000,http://localhost:8000")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def database_url_async(self) -> str:
        """Convert database URL to async format for asyncpg."""
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace(
                "postgresql://", "postgresql+asyncpg://"
            )
        return ""

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is sufficiently long."""
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters long")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Export a default settings instance
settings = get_settings()
