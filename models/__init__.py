"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema
from models.ledger import (
    InvoiceStatus,
    SYNC_ELIGIBLE_STATUSES,
    LedgerLineItem,
    LedgerInvoice,
    LedgerSite,
    LedgerOrganization,
    LedgerManager,
    InvoiceSku,
)
from models.customer_mapping import (
    CustomerMappingStatus,
    CustomerMatchMethod,
    CustomerMatchResult,
    CustomerMappingResponse,
    CustomerMatchingRunResult,
    CustomerMappingStats,
)
from models.sku_mapping import (
    SkuMappingStatus,
    SkuMatchType,
    SkuMappingMethod,
    SkuMatchResult,
    SkuMatchStats,
    SkuMappingResponse,
    SkuMatchApproval,
    SkuApproveAllResult,
)
from models.invoice_validation import (
    ValidationStatus,
    IssueType,
    IssueSeverity,
    IssueCode,
    BlockingIssue,
    ValidationResult,
    ValidationBatchResult,
    InvoiceValidationResponse,
    ValidationStats,
)
from models.match_log import (
    ALGORITHM_VERSION,
    MatchEntityType,
    MatchLogCreate,
    MatchLogResponse,
)
from models.invoice_sync import (
    SkippedReason,
    InvoiceSyncResult,
    BatchSyncResult,
    SyncStats,
    InvoiceForSync,
    InvoiceDetails,
    InvoiceComparison,
)

__all__ = [
    # Base
    "BaseSchema",

    # Ledger
    "InvoiceStatus",
    "SYNC_ELIGIBLE_STATUSES",
    "LedgerLineItem",
    "LedgerInvoice",
    "LedgerSite",
    "LedgerOrganization",
    "LedgerManager",
    "InvoiceSku",

    # Customer mapping
    "CustomerMappingStatus",
    "CustomerMatchMethod",
    "CustomerMatchResult",
    "CustomerMappingResponse",
    "CustomerMatchingRunResult",
    "CustomerMappingStats",

    # SKU mapping
    "SkuMappingStatus",
    "SkuMatchType",
    "SkuMappingMethod",
    "SkuMatchResult",
    "SkuMatchStats",
    "SkuMappingResponse",
    "SkuMatchApproval",
    "SkuApproveAllResult",

    # Validation
    "ValidationStatus",
    "IssueType",
    "IssueSeverity",
    "IssueCode",
    "BlockingIssue",
    "ValidationResult",
    "ValidationBatchResult",
    "InvoiceValidationResponse",
    "ValidationStats",

    # Match log
    "ALGORITHM_VERSION",
    "MatchEntityType",
    "MatchLogCreate",
    "MatchLogResponse",

    # Sync
    "SkippedReason",
    "InvoiceSyncResult",
    "BatchSyncResult",
    "SyncStats",
    "InvoiceForSync",
    "InvoiceDetails",
    "InvoiceComparison",
]
