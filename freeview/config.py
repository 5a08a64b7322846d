"""
Configuration management for the Freeview addon.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "NZ Freeview TV"
    app_version: str = "1.0.4"
    debug: bool = False
    log_level: str = "INFO"

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8080

    # Externally visible base URL used when building proxy links.
    # Leave empty to derive it from the incoming request.
    public_base_url: Optional[str] = None

    # CORS Configuration
    cors_origins: list[str] = ["*"]

    # Rate Limiting (addon endpoints only, the proxy is not limited)
    rate_limit_per_minute: int = 120

    # Channel feed
    channel_feed_url: str = "https://i.mjh.nz/nz/kodi-tv.m3u8"
    feed_timeout_seconds: float = 30.0
    channel_cache_ttl_seconds: int = 3600  # 1 hour
    auto_refresh_interval_seconds: int = 1800  # 30 minutes (0 = disabled)

    # Stream proxy
    proxy_timeout_seconds: float = 30.0
    proxy_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    # Some broadcasters reject requests without any Referer
    proxy_default_referer: str = " "

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="FREEVIEW_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
