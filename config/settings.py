"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (staging and canonical writes)"
    )

    # ===================
    # SHOPIFY (UPSTREAM VENDOR)
    # ===================
    shopify_store_domain: Optional[str] = Field(
        None,
        description="Vendor store domain, e.g. vendor.myshopify.com"
    )
    shopify_admin_token: Optional[str] = Field(
        None,
        description="Admin API access token"
    )
    shopify_location_id: Optional[str] = Field(
        None,
        description="Location whose inventory levels are synced"
    )
    shopify_api_version: str = Field(
        default="2024-01",
        description="Admin API version"
    )

    # ===================
    # SYNC TUNING
    # ===================
    sync_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Records per upstream page (upstream maximum is 250)"
    )
    upstream_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout for a single upstream request"
    )
    upstream_max_retries: int = Field(
        default=4,
        ge=0,
        le=10,
        description="Retries for 429/5xx/network errors before a page is failed"
    )
    upstream_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        le=30,
        description="Base delay for exponential backoff"
    )
    upstream_max_backoff_seconds: float = Field(
        default=30.0,
        ge=0,
        le=300,
        description="Cap on a single backoff delay"
    )
    persistence_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for staging/canonical writes"
    )
    persistence_backoff_seconds: float = Field(
        default=0.2,
        ge=0,
        le=30,
        description="Base delay between database write retries"
    )

    # ===================
    # STOCK THRESHOLDS
    # ===================
    default_low_stock_threshold: int = Field(
        default=5,
        ge=0,
        le=10000,
        description="Low-stock threshold for variants created by reconciliation"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def shopify_configured(self) -> bool:
        """Check if upstream credentials are complete."""
        return bool(
            self.shopify_store_domain
            and self.shopify_admin_token
            and self.shopify_location_id
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
