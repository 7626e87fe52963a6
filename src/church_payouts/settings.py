"""Environment-driven configuration."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEFAULT_STALE_DONATION_DAYS = 7
DEFAULT_RECONCILE_DELAY_SECONDS = 1.0
DEFAULT_CLERK_API_URL = "https://api.clerk.com/v1"


def _get_bool_env(name: str, default: bool) -> bool:
    """Read a boolean from environment variables with safe fallback."""
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_optional_env(name: str) -> Optional[str]:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return None
    return raw_value.strip()


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API, cron endpoints and CLI."""

    environment: str = "development"
    stripe_api_key: Optional[str] = None
    api_key: Optional[str] = None
    cron_secret: Optional[str] = None
    stale_donation_days: int = DEFAULT_STALE_DONATION_DAYS
    reconcile_delay_seconds: float = DEFAULT_RECONCILE_DELAY_SECONDS
    clerk_secret_key: Optional[str] = None
    clerk_api_url: str = DEFAULT_CLERK_API_URL
    slack_webhook_url: Optional[str] = None
    app_url: str = "http://localhost:3000"
    rate_limit_enabled: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        return cls(
            environment=(os.getenv("APP_ENV") or "development").strip().lower(),
            stripe_api_key=_get_optional_env("STRIPE_API_KEY"),
            api_key=_get_optional_env("API_KEY"),
            cron_secret=_get_optional_env("CRON_SECRET"),
            stale_donation_days=int(
                os.getenv("STALE_DONATION_DAYS", DEFAULT_STALE_DONATION_DAYS)
            ),
            reconcile_delay_seconds=float(
                os.getenv("RECONCILE_DELAY_SECONDS", DEFAULT_RECONCILE_DELAY_SECONDS)
            ),
            clerk_secret_key=_get_optional_env("CLERK_SECRET_KEY"),
            clerk_api_url=(os.getenv("CLERK_API_URL") or DEFAULT_CLERK_API_URL).rstrip("/"),
            slack_webhook_url=_get_optional_env("SLACK_WEBHOOK_URL"),
            app_url=(os.getenv("APP_URL") or "http://localhost:3000").rstrip("/"),
            rate_limit_enabled=_get_bool_env("RATE_LIMIT_ENABLED", True),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings. Call ``get_settings.cache_clear()`` after changing env."""
    return Settings.from_env()
