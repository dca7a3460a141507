"""Partsdesk backend configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the Partsdesk backend."""

    # Payment gateway (Razorpay)
    razorpay_webhook_secret: str = ""
    razorpay_key_secret: str = ""

    # Shipping aggregator (Shiprocket)
    shiprocket_email: str = ""
    shiprocket_password: str = ""
    shiprocket_base_url: str = "https://apiv2.shiprocket.in/v1/external"
    shiprocket_token_ttl_seconds: float = 540.0  # provider TTL is far longer
    shiprocket_token_margin_seconds: float = 30.0
    http_timeout_seconds: float = 10.0

    # Persistence: empty values select the in-process fallbacks
    database_url: str = ""
    redis_url: str = ""
    redis_socket_timeout_seconds: float = 2.0
    webhook_dedup_ttl_seconds: int = 86400

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
