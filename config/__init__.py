"""
Configuration module.

Exports:
    settings: Application settings instance
    get_settings: Function to get settings (for dependency injection)
    db: Function to get Supabase client
    get_supabase_client: Same as db
    check_connection: Health check function
"""

from config.settings import settings, get_settings, Settings
from config.database import (
    db,
    get_supabase_client,
    check_connection,
    reset_connection,
    DatabaseError,
    ConnectionError,
    CUSTOMER_MAPPING_TABLE,
    SKU_MAPPING_TABLE,
    INVOICE_VALIDATION_TABLE,
    MATCH_LOG_TABLE,
)

__all__ = [
    # Settings
    "settings",
    "get_settings",
    "Settings",

    # Database
    "db",
    "get_supabase_client",
    "check_connection",
    "reset_connection",
    "DatabaseError",
    "ConnectionError",

    # Tables
    "CUSTOMER_MAPPING_TABLE",
    "SKU_MAPPING_TABLE",
    "INVOICE_VALIDATION_TABLE",
    "MATCH_LOG_TABLE",
]
