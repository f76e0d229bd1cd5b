"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.customer_mappings import router as customer_mappings_router
from routes.sku_mappings import router as sku_mappings_router
from routes.validations import router as validations_router
from routes.sync import router as sync_router

__all__ = [
    "customer_mappings_router",
    "sku_mappings_router",
    "validations_router",
    "sync_router",
]
