"""
Business logic services.

Each service handles one domain area.
"""

from services.mapping_store import MappingStore, get_mapping_store
from services.match_log_service import MatchLogService, get_match_log_service
from services.customer_matching_service import CustomerMatchingService, get_customer_matching_service
from services.sku_matching_service import SkuMatchingService, get_sku_matching_service
from services.invoice_validation_service import InvoiceValidationService, get_invoice_validation_service
from services.invoice_sync_service import InvoiceSyncService, get_invoice_sync_service
from services.tax_service import TaxBreakdown, calculate_quebec_taxes, build_txn_tax_detail

__all__ = [
    "MappingStore",
    "get_mapping_store",
    "MatchLogService",
    "get_match_log_service",
    "CustomerMatchingService",
    "get_customer_matching_service",
    "SkuMatchingService",
    "get_sku_matching_service",
    "InvoiceValidationService",
    "get_invoice_validation_service",
    "InvoiceSyncService",
    "get_invoice_sync_service",
    "TaxBreakdown",
    "calculate_quebec_taxes",
    "build_txn_tax_detail",
]
