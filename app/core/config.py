# app/core/config.py
# All application settings loaded from environment variables / .env file
# In production: values come from the secret manager via env injection
# In development: loaded from .env file via python-dotenv

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Single source of truth for all LernHub configuration.
    pydantic-settings automatically reads from environment variables.
    Variable names are case-insensitive.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_env: str = "development"
    app_name: str = "LernHub"
    app_version: str = "1.0.0"
    debug: bool = False
    auto_migrate_on_startup: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Database
    database_url: str
    sql_echo: bool = False

    # Redis (realtime event fan-out)
    redis_url: str = "redis://localhost:6379/0"
    event_transport: str = "redis"          # redis | log
    event_channel_prefix: str = "lernhub"

    # JWT
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 30

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    payment_currency: str = "EUR"

    # SendGrid
    sendgrid_api_key: str = ""
    email_from: str = "noreply@lernhub.de"
    email_from_name: str = "LernHub"

    # ── Request matching ──────────────────────────────────────────────────────
    trial_request_ttl_hours: int = 24
    session_request_ttl_days: int = 7
    request_extension_days: int = 7
    request_max_extensions: int = 1
    request_reminder_grace_days: int = 3
    request_expiry_mode: str = "delete"     # delete | expire

    # ── Sessions ──────────────────────────────────────────────────────────────
    starting_soon_minutes: int = 10
    reschedule_cutoff_minutes: int = 10

    # ── Tutor feedback ────────────────────────────────────────────────────────
    feedback_due_day: int = 3
    feedback_reminder_days: str = "3,1"

    # ── Pricing fallback (EUR per hour) ──────────────────────────────────────
    price_flexible: float = 30.0
    price_regular: float = 28.0
    price_long_term: float = 25.0

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Parse comma-separated ALLOWED_ORIGINS into a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def feedback_reminder_horizons(self) -> List[int]:
        return [int(d) for d in self.feedback_reminder_days.split(",") if d.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance.
    Use as a FastAPI dependency: settings = Depends(get_settings)
    Or import directly:         from app.core.config import settings
    """
    return Settings()


# Module-level singleton -- import this directly in most places
settings = get_settings()
