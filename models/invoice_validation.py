"""
Invoice validation models.

Validation status moves pending → ready | blocked on each validation
pass. Only the sync engine sets synced, and validation never leaves it.
"""

from datetime import datetime
from typing import Any, Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema


class ValidationStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    BLOCKED = "blocked"
    SYNCED = "synced"


class IssueType(str, Enum):
    CUSTOMER_MAPPING = "customer_mapping"
    SKU_MAPPING = "sku_mapping"
    INVOICE_STATUS = "invoice_status"
    DATA_QUALITY = "data_quality"


class IssueSeverity(str, Enum):
    ERROR = "error"      # Blocks sync
    WARNING = "warning"  # Surfaced only


class IssueCode(str, Enum):
    CUSTOMER_NO_ORG = "CUSTOMER_NO_ORG"
    CUSTOMER_NO_MAPPING = "CUSTOMER_NO_MAPPING"
    CUSTOMER_NOT_APPROVED = "CUSTOMER_NOT_APPROVED"
    CUSTOMER_NO_QB_LINK = "CUSTOMER_NO_QB_LINK"
    SKU_NO_MAPPING = "SKU_NO_MAPPING"
    SKU_NOT_APPROVED = "SKU_NOT_APPROVED"
    SKU_NEEDS_CREATION = "SKU_NEEDS_CREATION"
    INVOICE_DRAFT = "INVOICE_DRAFT"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    INVOICE_INVALID_STATUS = "INVOICE_INVALID_STATUS"
    MISSING_LINE_ITEMS = "MISSING_LINE_ITEMS"
    MISSING_INVOICE_NUMBER = "MISSING_INVOICE_NUMBER"
    ZERO_TOTAL = "ZERO_TOTAL"
    TAX_MISMATCH = "TAX_MISMATCH"


class BlockingIssue(BaseSchema):
    """Typed, user-actionable reason an invoice cannot sync."""

    type: IssueType
    severity: IssueSeverity
    code: IssueCode
    message: str
    details: Optional[dict[str, Any]] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == IssueSeverity.ERROR


class CustomerDetails(BaseSchema):
    """Resolved customer mapping summary for a validated invoice."""

    mapping_id: Optional[int] = None
    atek_organization_id: Optional[str] = None
    atek_organization_name: Optional[str] = None
    quickbooks_customer_id: Optional[str] = None
    quickbooks_customer_name: Optional[str] = None
    mapping_status: Optional[str] = None


class SkuSummary(BaseSchema):
    total: int = 0
    mapped: int = 0
    pending: int = 0
    needs_creation: int = 0


class CustomerCheck(BaseSchema):
    """Outcome of the customer mapping check."""

    is_valid: bool
    mapping_id: Optional[int] = None
    quickbooks_customer_id: Optional[str] = None
    quickbooks_customer_name: Optional[str] = None
    mapping_status: Optional[str] = None
    issues: list[BlockingIssue] = Field(default_factory=list)


class SkuCheck(BaseSchema):
    """Outcome of the SKU mapping check."""

    is_complete: bool
    summary: SkuSummary = Field(default_factory=SkuSummary)
    missing: list[str] = Field(default_factory=list)
    not_approved: list[str] = Field(default_factory=list)
    needs_creation: list[str] = Field(default_factory=list)
    issues: list[BlockingIssue] = Field(default_factory=list)


class ValidationResult(BaseSchema):
    """Verdict for one invoice."""

    invoice_id: str
    invoice_number: Optional[str] = None
    status: ValidationStatus
    customer_mapping_validated: bool
    all_skus_mapped: bool
    blocking_issues: list[BlockingIssue] = Field(default_factory=list)
    confidence_score: float
    ready_for_sync: bool
    customer_details: Optional[CustomerDetails] = None
    sku_summary: SkuSummary = Field(default_factory=SkuSummary)
    # Set when validation itself failed; status stays pending
    error: Optional[str] = None


class ValidationBatchResult(BaseSchema):
    """One result per input invoice; failed ones carry an error."""

    total: int
    ready: int
    blocked: int
    pending: int
    failed: int = 0
    results: list[ValidationResult]


class InvoiceValidationResponse(BaseSchema):
    """Stored validation row."""

    validation_id: int
    atek_invoice_id: str
    atek_invoice_number: Optional[str] = None
    validation_status: ValidationStatus
    customer_mapping_validated: bool = False
    all_skus_mapped: bool = False
    blocking_issues: list[BlockingIssue] = Field(default_factory=list)
    confidence_score: float = 0
    ready_for_sync: bool = False
    sync_approved_by: Optional[str] = None
    sync_approved_date: Optional[datetime] = None
    quickbooks_invoice_id: Optional[str] = None
    sync_date: Optional[datetime] = None
    validation_notes: Optional[str] = None
    created_date: Optional[datetime] = None
    last_modified_date: Optional[datetime] = None


class ValidationStats(BaseSchema):
    total: int = 0
    pending: int = 0
    ready: int = 0
    blocked: int = 0
    synced: int = 0
    avg_confidence: float = 0
    ready_for_sync: int = 0


# ===================
# REQUEST BODIES
# ===================

class ValidateBatchRequest(BaseSchema):
    invoice_ids: list[str] = Field(..., min_length=1)


class ValidatePendingRequest(BaseSchema):
    limit: int = Field(default=100, ge=1, le=1000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class SyncApprovalRequest(BaseSchema):
    approved_by: str = Field(..., min_length=1)


class MarkSyncedRequest(BaseSchema):
    quickbooks_invoice_id: str = Field(..., min_length=1)
