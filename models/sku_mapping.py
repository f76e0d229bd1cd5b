"""
SKU mapping models.

Matcher output (SkuMatchResult) is ephemeral; only approved matches or
items created inline become SkuMapping rows.
"""

from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema


class SkuMappingStatus(str, Enum):
    """SKU mapping lifecycle."""

    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_CREATION = "needs_creation"


class SkuMatchType(str, Enum):
    """Matcher classification."""

    EXACT_CODE = "exact_code"
    EXACT_NAME = "exact_name"
    FUZZY_NAME = "fuzzy_name"
    NO_MATCH = "no_match"


class SkuMappingMethod(str, Enum):
    """Method stored on a persisted mapping."""

    CODE_EXACT = "code_exact"
    NAME_FUZZY = "name_fuzzy"
    MANUAL = "manual"
    CREATED = "created"


class SkuMatchResult(BaseSchema):
    """Classification of one ledger SKU against the QuickBooks catalog."""

    atek_sku_id: str
    atek_sku_code: str
    atek_sku_name: Optional[str] = None
    atek_description: Optional[str] = None
    atek_unit_price: Optional[float] = None
    invoice_count: int = 0
    quickbooks_item_id: Optional[str] = None
    quickbooks_item_name: Optional[str] = None
    quickbooks_item_type: Optional[str] = None
    match_type: SkuMatchType = SkuMatchType.NO_MATCH
    confidence_score: float = 0


class SkuMatchStats(BaseSchema):
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    by_match_type: dict[str, int] = Field(default_factory=dict)


class SkuMappingResponse(BaseSchema):
    """SKU mapping row."""

    mapping_id: int
    atek_sku_id: Optional[str] = None
    atek_sku_code: str
    atek_sku_name: Optional[str] = None
    quickbooks_item_id: Optional[str] = None
    quickbooks_item_name: Optional[str] = None
    quickbooks_item_type: Optional[str] = None
    mapping_status: SkuMappingStatus
    confidence_score: float = 0
    matching_method: Optional[str] = None
    requires_qb_creation: bool = False
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    created_date: Optional[datetime] = None
    last_modified_date: Optional[datetime] = None


class SkuMatchApproval(BaseSchema):
    """Promote one matcher suggestion to an approved mapping."""

    atek_sku_id: Optional[str] = None
    atek_sku_code: str = Field(..., min_length=1)
    atek_sku_name: Optional[str] = None
    quickbooks_item_id: str = Field(..., min_length=1)
    quickbooks_item_name: str
    quickbooks_item_type: Optional[str] = None
    match_type: SkuMatchType = SkuMatchType.NO_MATCH
    confidence_score: float = Field(default=1.0, ge=0, le=1)
    approved_by: Optional[str] = None


class SkuApproveAllResult(BaseSchema):
    approved_count: int
    skipped_count: int
    total_processed: int
