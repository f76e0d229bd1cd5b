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
    # SUPABASE (mapping store)
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # LEDGER (ATEK / MongoDB, read-only)
    # ===================
    ledger_mongo_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string for the ATEK ledger"
    )
    ledger_database: str = Field(
        default="atek",
        description="Ledger database name"
    )
    ledger_timeout_ms: int = Field(
        default=10000,
        ge=1000,
        le=120000,
        description="Server selection timeout for the ledger connection"
    )

    # ===================
    # QUICKBOOKS
    # ===================
    quickbooks_realm_id: Optional[str] = Field(
        None,
        description="QuickBooks company (realm) ID"
    )
    quickbooks_access_token: Optional[str] = Field(
        None,
        description="OAuth access token (refreshed outside this service)"
    )
    quickbooks_environment: str = Field(
        default="sandbox",
        pattern="^(sandbox|production)$",
        description="QuickBooks API environment"
    )
    quickbooks_minor_version: int = Field(
        default=65,
        description="QuickBooks API minor version"
    )
    quickbooks_timeout_seconds: int = Field(
        default=60,
        ge=5,
        le=300,
        description="HTTP timeout for QuickBooks calls (paginated reads are slow)"
    )
    quickbooks_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient QuickBooks failures"
    )
    quickbooks_retry_initial_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="First backoff delay in milliseconds"
    )
    quickbooks_retry_max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Backoff delay ceiling in milliseconds"
    )
    quickbooks_tax_code_id: str = Field(
        default="TAX",
        description="Tax code reference applied to taxable lines"
    )
    quickbooks_gst_rate_id: str = Field(
        default="3",
        description="QuickBooks TaxRate ID for GST/TPS"
    )
    quickbooks_qst_rate_id: str = Field(
        default="4",
        description="QuickBooks TaxRate ID for QST/TVQ"
    )
    quickbooks_income_account_id: Optional[str] = Field(
        None,
        description="Default income account for created items"
    )

    # ===================
    # TAX (Quebec)
    # ===================
    gst_rate: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Federal GST/TPS rate"
    )
    qst_rate: float = Field(
        default=0.09975,
        ge=0,
        le=1,
        description="Provincial QST/TVQ rate"
    )

    # ===================
    # MATCHING THRESHOLDS
    # ===================
    match_proposed_threshold: float = Field(
        default=0.70,
        ge=0,
        le=1,
        description="Customer confidence at or above which a mapping is proposed"
    )
    match_high_confidence_threshold: float = Field(
        default=0.95,
        ge=0,
        le=1,
        description="Confidence counted as high in mapping stats"
    )
    sku_fuzzy_threshold: float = Field(
        default=0.80,
        ge=0,
        le=1,
        description="Minimum name similarity for a fuzzy SKU match"
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
    def quickbooks_configured(self) -> bool:
        """Check if QuickBooks credentials are present."""
        return bool(self.quickbooks_realm_id and self.quickbooks_access_token)

    @property
    def quickbooks_base_url(self) -> str:
        if self.quickbooks_environment == "production":
            return "https://quickbooks.api.intuit.com/v3/company"
        return "https://sandbox-quickbooks.api.intuit.com/v3/company"


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
