"""Configuration management for dramalog."""

from pydantic import PositiveInt, field_validator
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from urllib.parse import urlparse


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # TMDB
    tmdb_api_key: str

    # Database
    database_url: str = "sqlite:///./dramalog.db"

    # Kuryana (MyDramaList scraper proxy)
    kuryana_url: str = "https://kuryana.tbdh.app"
    kuryana_timeout: PositiveInt = 8  # seconds

    # TVmaze
    tvmaze_url: str = "https://api.tvmaze.com"
    tvmaze_api_key: str | None = None
    tvmaze_timeout: PositiveInt = 10  # seconds

    # Origin countries whose shows appear on the schedule
    schedule_countries: list[str] = ["KR", "CN", "JP", "TW", "TH", "US", "GB"]

    # Network settings
    # Proxy configuration in the format http://host:port or socks5://host:port
    proxy: str | None = None

    @field_validator("proxy")
    @classmethod
    def validate_proxy(cls, v: str | None) -> str | None:
        if v is None:
            return v

        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https", "socks4", "socks5", "socks5h"):
            raise ValueError(
                "Proxy must be a valid URL with scheme http/https/socks4/socks5/socks5h"
            )
        if not parsed.netloc:
            raise ValueError("Proxy must have a host and port")
        return v

    @field_validator("schedule_countries")
    @classmethod
    def normalize_countries(cls, v: list[str]) -> list[str]:
        return [c.strip().upper() for c in v if c.strip()]

    # Identity
    skip_auth: bool = False  # Dev mode: requests without X-User-Id use dev_user_id
    dev_user_id: str = "mock-user-1"

    # Bearer token the scheduler sends to POST /api/sync; unset leaves it open
    cron_secret: str | None = None

    # App settings
    debug: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
