"""
Ledger (ATEK) models.

Internal representation of the read-only ledger documents. Raw MongoDB
documents come in several legacy shapes; integrations/ledger_adapter.py
maps them onto these types before any business logic sees them.
"""

from datetime import date
from typing import Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema


class InvoiceStatus(str, Enum):
    """Ledger invoice status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    VOID = "void"


# Invoices in these states are billable and may be pushed to QuickBooks
SYNC_ELIGIBLE_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.PAID.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
)


class LedgerLineItem(BaseSchema):
    """One invoice line."""

    sku_id: str = ""
    sku_code: Optional[str] = None
    sku_name: Optional[str] = None
    description: Optional[str] = None
    quantity: float = 0
    unit_price: float = 0
    discount: float = Field(default=0, description="Percentage discount")
    amount: float = Field(default=0, description="Line amount after discount")
    taxable: bool = False

    @property
    def sku_key(self) -> str:
        """Grouping key: code, falling back to the SKU id."""
        return self.sku_code or self.sku_id


class LedgerInvoice(BaseSchema):
    """Normalized ledger invoice."""

    id: str
    invoice_number: str = ""
    organization_id: str = ""
    organization_name: Optional[str] = None
    manager_id: Optional[str] = None
    status: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    billing_site_id: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_addresses: list[str] = Field(default_factory=list)
    line_items: list[LedgerLineItem] = Field(default_factory=list)
    subtotal: float = 0
    tax_amount: float = 0
    total: float = 0
    currency: str = "CAD"
    notes: Optional[str] = None
    private_notes: Optional[str] = None
    po_number: Optional[str] = None
    project_name: Optional[str] = None

    @property
    def is_sync_eligible(self) -> bool:
        return self.status in SYNC_ELIGIBLE_STATUSES

    @property
    def is_taxable(self) -> bool:
        return any(item.taxable for item in self.line_items)


class LedgerSite(BaseSchema):
    """Organization site (billing or shipping)."""

    id: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class LedgerOrganization(BaseSchema):
    """Ledger organization (a customer when tagged 'customer')."""

    id: str
    name: str
    enabled: bool = True
    org_number: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    description: Optional[str] = None
    primary_site: Optional[LedgerSite] = None


class LedgerManager(BaseSchema):
    """Contractual manager (ledger user)."""

    id: str
    name: str
    email: str = ""


class InvoiceSku(BaseSchema):
    """Distinct SKU observed across sync-eligible invoices."""

    sku_id: str
    code: str
    name: Optional[str] = None
    description: Optional[str] = None
    unit_price: Optional[float] = None
    taxable: bool = False
    invoice_count: int = 0
