"""
Customer mapping models.

A mapping links a ledger organization (optionally narrowed to one
contractual manager) to a QuickBooks customer.
"""

from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import Field

from models.base import BaseSchema


class CustomerMappingStatus(str, Enum):
    """Customer mapping lifecycle."""

    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVIEW = "needs_review"


class CustomerMatchMethod(str, Enum):
    """How the QuickBooks customer was chosen."""

    ORG_NUMBER = "org_number"
    FUZZY_NAME = "fuzzy_name"
    MANUAL = "manual"
    NO_MATCH = "no_match"


class CustomerCandidate(BaseSchema):
    """Scored QuickBooks customer candidate."""

    qb_customer_id: str
    qb_display_name: str
    score: float


class ConfidenceFactors(BaseSchema):
    """Sub-scores recorded with each automatic match."""

    org_num_match: bool = False
    org_num_score: float = 0
    name_score: float = 0
    is_sub_customer: bool = False


class CustomerMatchResult(BaseSchema):
    """Best match for one ledger organization."""

    atek_organization_id: str
    atek_organization_name: str
    atek_org_number: Optional[str] = None
    quickbooks_customer_id: Optional[str] = None
    quickbooks_customer_name: Optional[str] = None
    quickbooks_customer_email: Optional[str] = None
    confidence_score: float = 0
    matching_method: CustomerMatchMethod = CustomerMatchMethod.NO_MATCH
    confidence_factors: ConfidenceFactors = Field(default_factory=ConfidenceFactors)
    candidates: list[CustomerCandidate] = Field(default_factory=list)
    mapping_status: CustomerMappingStatus = CustomerMappingStatus.NEEDS_REVIEW


class CustomerMappingResponse(BaseSchema):
    """Customer mapping row."""

    mapping_id: int
    atek_organization_id: str
    atek_organization_name: Optional[str] = None
    atek_contractual_manager_id: str = ""
    atek_manager_name: Optional[str] = None
    atek_manager_email: Optional[str] = None
    quickbooks_customer_id: Optional[str] = None
    quickbooks_customer_name: Optional[str] = None
    quickbooks_customer_email: Optional[str] = None
    mapping_status: CustomerMappingStatus
    confidence_score: float = 0
    confidence_factors: Optional[dict] = None
    matching_method: Optional[str] = None
    requires_manual_review: bool = False
    review_notes: Optional[str] = None
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    created_date: Optional[datetime] = None
    last_modified_date: Optional[datetime] = None


class CustomerMatchingRunResult(BaseSchema):
    """Summary of a customer matching batch run."""

    total_organizations: int
    total_mappings: int
    matched: int
    unmatched: int
    needs_review: int
    results: list[CustomerMatchResult]


class CustomerMappingStats(BaseSchema):
    """Counts by status and confidence band."""

    total: int = 0
    proposed: int = 0
    approved: int = 0
    rejected: int = 0
    needs_review: int = 0
    avg_confidence: float = 0
    high_confidence: int = 0
    low_confidence: int = 0


# ===================
# REQUEST BODIES
# ===================

class MappingApproveRequest(BaseSchema):
    approved_by: str = Field(..., min_length=1, description="Reviewer name or email")


class MappingBulkApproveRequest(BaseSchema):
    mapping_ids: list[int] = Field(..., min_length=1)
    approved_by: str = Field(..., min_length=1)


class MappingRejectRequest(BaseSchema):
    notes: Optional[str] = Field(None, max_length=1000)


class ManualMappingCreate(BaseSchema):
    """Human-chosen organization to customer link."""

    atek_organization_id: str = Field(..., min_length=1)
    quickbooks_customer_id: str = Field(..., min_length=1)
    approved_by: str = Field(..., min_length=1)


class MappingCustomerUpdate(BaseSchema):
    """Repoint a mapping to another QuickBooks customer."""

    quickbooks_customer_id: str = Field(..., min_length=1)
    quickbooks_customer_name: str = Field(..., min_length=1)
