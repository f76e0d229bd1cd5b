"""
Database connection management.

Provides the Supabase client singleton used as the mapping store.
The ledger's MongoDB connection lives in integrations/ledger.py.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings

logger = structlog.get_logger(__name__)

# Tables owned by this service
CUSTOMER_MAPPING_TABLE = "customer_mapping"
SKU_MAPPING_TABLE = "sku_mapping"
INVOICE_VALIDATION_TABLE = "invoice_validation"
MATCH_LOG_TABLE = "matching_algorithm_log"


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class ConnectionError(DatabaseError):
    """Failed to connect to database."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Call get_supabase_client.cache_clear() to reconnect.

    Raises:
        ConnectionError: If connection fails
    """
    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        client = create_client(
            settings.supabase_url,
            settings.supabase_key
        )

        logger.info("supabase_connected", status="success")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise ConnectionError(f"Failed to connect to Supabase: {e}") from e


# Convenience alias
db = get_supabase_client


def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with row counts per mapping table
    """
    try:
        client = get_supabase_client()

        customers = client.table(CUSTOMER_MAPPING_TABLE).select("mapping_id", count="exact").execute()
        validations = client.table(INVOICE_VALIDATION_TABLE).select("validation_id", count="exact").execute()

        return {
            "status": "healthy",
            "customer_mappings": customers.count,
            "invoice_validations": validations.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def reset_connection():
    """Reset the cached database connection."""
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
