# channel_sync/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Basic Auth for the HTTP surface
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Fernet key used to encrypt credential secrets at rest
    CREDENTIAL_ENCRYPTION_KEY: str = ""

    # Mercado Livre
    MERCADOLIVRE_APP_ID: str = ""
    MERCADOLIVRE_SECRET_KEY: str = ""
    MERCADOLIVRE_SITE_ID: str = "MLB"
    MERCADOLIVRE_CURRENCY_ID: str = "BRL"

    # Amazon SP-API
    AMAZON_CLIENT_ID: str = ""
    AMAZON_CLIENT_SECRET: str = ""
    AMAZON_REGION: str = "na"
    AMAZON_DEFAULT_MARKETPLACE_ID: str = "ATVPDKIKX0DER"

    # Shopify (tokens do not expire)
    SHOPIFY_API_VERSION: str = "2024-01"

    # Shopee Open Platform v2
    SHOPEE_PARTNER_ID: int = 0
    SHOPEE_PARTNER_KEY: str = ""
    SHOPEE_USE_SANDBOX: bool = False

    # Sync engine
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_INTERVAL_MINUTES: int = 30
    SYNC_INITIAL_LOOKBACK_DAYS: int = 30
    SYNC_MAX_CONCURRENT_SELLERS: int = 4
    SYNC_MAX_CONCURRENT_CREDENTIALS: int = 3
    SYNC_REQUEST_TIMEOUT_SECONDS: float = 30.0
    SYNC_RETRY_MAX_ATTEMPTS: int = 3
    SYNC_RETRY_BASE_DELAY: float = 1.0
    SYNC_RETRY_MAX_DELAY: float = 30.0

    # Token rotation
    TOKEN_REFRESH_MARGIN_MINUTES: int = 15
    TOKEN_REFRESH_INTERVAL_MINUTES: int = 10

    # Housekeeping
    SYNC_EVENT_RETENTION_DAYS: int = 30

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
