"""
Application settings.

All configuration is read from environment variables (optionally from a local
.env file during development) through python-decouple, so every service gets
typed values from one place instead of scattering os.getenv calls.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pytz
from decouple import Csv, config
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env for local development; injected environment variables win.
load_dotenv(override=False)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


@dataclass(frozen=True)
class Settings:
    """Typed view over the environment."""
    supabase_url: Optional[str]
    supabase_service_role_key: Optional[str]
    supabase_jwt_secret: Optional[str]
    backend_api_key: Optional[str]
    cron_secret: Optional[str]
    coingecko_api_key: str
    redis_url: str
    quote_http_timeout_seconds: float
    quote_max_concurrency: int
    snapshot_timezone: str
    cors_allowed_origins: List[str] = field(default_factory=list)

    @property
    def cache_enabled(self) -> bool:
        return bool(self.redis_url)

    def snapshot_tz(self):
        """Resolve the configured snapshot time zone, falling back to UTC."""
        try:
            return pytz.timezone(self.snapshot_timezone)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown SNAPSHOT_TIMEZONE '{self.snapshot_timezone}', using UTC")
            return pytz.utc


def load_settings() -> Settings:
    """Build a Settings instance from the current environment."""
    return Settings(
        supabase_url=config("SUPABASE_URL", default=None),
        supabase_service_role_key=config("SUPABASE_SERVICE_ROLE_KEY", default=None),
        supabase_jwt_secret=config("SUPABASE_JWT_SECRET", default=None),
        backend_api_key=config("BACKEND_API_KEY", default=None),
        cron_secret=config("CRON_SECRET", default=None),
        coingecko_api_key=config("COINGECKO_API_KEY", default=""),
        redis_url=config("REDIS_URL", default=""),
        quote_http_timeout_seconds=config("QUOTE_HTTP_TIMEOUT_SECONDS", default=10.0, cast=float),
        quote_max_concurrency=config("QUOTE_MAX_CONCURRENCY", default=10, cast=int),
        snapshot_timezone=config("SNAPSHOT_TIMEZONE", default="UTC"),
        cors_allowed_origins=config("CORS_ALLOWED_ORIGINS", default=DEFAULT_CORS_ORIGINS, cast=Csv()),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    global _settings

    if _settings is None:
        _settings = load_settings()

    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
