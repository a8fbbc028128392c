"""
Storefront Checkout Backend Configuration.

Environment-based configuration using Pydantic Settings.
All sensitive values should be set via environment variables.
"""

from functools import lru_cache

from pydantic import RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Storefront Checkout"
    app_version: str = "1.0.0"
    debug: bool = False

    # API
    api_v1_prefix: str = "/api/v1"

    # Redis (handoff channel)
    redis_url: RedisDsn = "redis://localhost:6379/0"
    handoff_ttl_seconds: int = 60 * 30

    # Delivery service
    delivery_api_url: str = "http://localhost:8080/api"
    delivery_api_timeout: int = 10

    # Live estimate
    estimate_debounce_seconds: float = 0.8

    # Open checkouts idle this long are closed by the session sweeper
    checkout_idle_timeout_seconds: int = 60 * 30
    checkout_sweep_interval_seconds: float = 60.0

    # Serviced metro, used for address fields the customer left blank
    service_city: str = "Los Angeles"
    service_state: str = "CA"
    service_country: str = "US"

    # Payment (Stripe)
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    shop_currency: str = "USD"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    @field_validator("delivery_api_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoint paths are joined with a leading slash."""
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("estimate_debounce_seconds")
    @classmethod
    def validate_debounce(cls, v: float) -> float:
        if v < 0:
            raise ValueError("estimate_debounce_seconds must be >= 0")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
