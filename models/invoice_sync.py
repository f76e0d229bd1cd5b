"""
Invoice sync models.

Sync outcomes are data: a failed or skipped invoice is a result with an
error and, where it applies, a skipped_reason.
"""

from datetime import date, datetime
from typing import Any, Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema
from models.customer_mapping import CustomerMappingResponse
from models.invoice_validation import BlockingIssue, InvoiceValidationResponse
from models.ledger import LedgerInvoice, LedgerLineItem


class SkippedReason(str, Enum):
    ALREADY_SYNCED = "already_synced"
    DUPLICATE_IN_QB = "duplicate_in_qb"
    NO_CUSTOMER_MAPPING = "no_customer_mapping"
    MISSING_SKU_MAPPINGS = "missing_sku_mappings"


class CustomerResolution(str, Enum):
    MAPPING = "mapping"
    MANUAL_OVERRIDE = "manual_override"


class QuickBooksItemType(str, Enum):
    SERVICE = "Service"
    NON_INVENTORY = "NonInventory"
    INVENTORY = "Inventory"


class InvoiceSyncResult(BaseSchema):
    """Outcome of pushing one invoice."""

    atek_invoice_id: str
    atek_invoice_number: str = ""
    success: bool = False
    quickbooks_invoice_id: Optional[str] = None
    quickbooks_doc_number: Optional[str] = None
    updated_existing: bool = False
    customer_resolution: Optional[CustomerResolution] = None
    error: Optional[str] = None
    skipped_reason: Optional[SkippedReason] = None
    line_items_created: int = 0


class BatchSyncResult(BaseSchema):
    total: int
    successful: int
    failed: int
    skipped: int
    results: list[InvoiceSyncResult]


class SyncStats(BaseSchema):
    """Ledger invoices by validation state. Unvalidated invoices count as pending."""

    total: int = 0
    pending: int = 0
    ready: int = 0
    blocked: int = 0
    synced: int = 0


class InvoiceForSync(BaseSchema):
    """Invoice list row: ledger data, validation state, QuickBooks match."""

    id: str
    invoice_number: str
    organization_id: str
    organization_number: Optional[str] = None
    organization_name: Optional[str] = None
    contractual_manager_id: Optional[str] = None
    contractual_manager_name: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    total_amount: float = 0
    currency: str = "CAD"
    line_item_count: int = 0
    validation_status: str = "pending"
    customer_mapping_validated: bool = False
    all_skus_mapped: bool = False
    blocking_issues: list[BlockingIssue] = Field(default_factory=list)
    quickbooks_invoice_id: Optional[str] = None
    quickbooks_customer_id: Optional[str] = None
    quickbooks_customer_name: Optional[str] = None
    sync_date: Optional[datetime] = None
    match_score: Optional[int] = Field(None, description="Agreement with the QuickBooks invoice, 0-100")


# ===================
# DETAILS / COMPARE
# ===================

class LineItemMapping(BaseSchema):
    mapping_id: int
    quickbooks_item_id: Optional[str] = None
    quickbooks_item_name: Optional[str] = None
    mapping_status: str


class LineItemWithMapping(LedgerLineItem):
    mapping: Optional[LineItemMapping] = None


class InvoiceDetails(BaseSchema):
    """Ledger invoice with per-line SKU mappings and validation state."""

    invoice: LedgerInvoice
    line_items: list[LineItemWithMapping]
    validation: Optional[InvoiceValidationResponse] = None
    customer_mapping: Optional[dict[str, Any]] = None


class QuickBooksLineView(BaseSchema):
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 1
    unit_price: float = 0
    amount: float = 0


class QuickBooksInvoiceView(BaseSchema):
    id: str
    invoice_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    billing_address: Optional[dict[str, str]] = None
    shipping_address: Optional[dict[str, str]] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: list[QuickBooksLineView] = Field(default_factory=list)
    subtotal: float = 0
    tax_amount: float = 0
    total: float = 0
    memo: Optional[str] = None


class InvoiceComparison(BaseSchema):
    """Ledger invoice side by side with its QuickBooks counterpart."""

    atek: InvoiceDetails
    qb: Optional[QuickBooksInvoiceView] = None
    match_score: Optional[int] = None


# ===================
# INLINE CREATION
# ===================

class MissingSku(BaseSchema):
    """SKU on an invoice with no approved mapping."""

    sku_id: str
    sku_code: str
    sku_name: Optional[str] = None
    description: Optional[str] = None
    unit_price: float = 0
    taxable: bool = False
    mapping_status: Optional[str] = None


class SkuCreateInput(BaseSchema):
    sku_id: str = ""
    sku_code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    unit_price: Optional[float] = Field(None, ge=0)
    item_type: QuickBooksItemType = QuickBooksItemType.SERVICE
    income_account_id: Optional[str] = None
    taxable: bool = True


class SkuCreateOutcome(BaseSchema):
    sku_code: str
    success: bool
    quickbooks_item_id: Optional[str] = None
    error: Optional[str] = None


class SkuCreateBatchResult(BaseSchema):
    success_count: int
    fail_count: int
    results: list[SkuCreateOutcome]


class CustomerCreateInput(BaseSchema):
    """QuickBooks customer fields; address defaults to the ledger billing address."""

    display_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    city: Optional[str] = None
    province: str = "QC"
    postal_code: Optional[str] = None
    country: str = "Canada"
    notes: Optional[str] = None
    approved_by: str = "inline"


class CustomerCreateResult(BaseSchema):
    quickbooks_customer_id: str
    display_name: str
    mapping: CustomerMappingResponse


# ===================
# REQUEST BODIES
# ===================

class SyncInvoiceRequest(BaseSchema):
    customer_id_override: Optional[str] = None
    force: bool = False


class SyncBatchRequest(BaseSchema):
    invoice_ids: list[str] = Field(..., min_length=1)


class CreateMissingSkusRequest(BaseSchema):
    items: list[SkuCreateInput] = Field(..., min_length=1)
