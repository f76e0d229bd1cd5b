"""
Customer mapping API routes.

Matching runs and the review workflow for ledger organization to
QuickBooks customer mappings.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.customer_mapping import (
    CustomerMappingResponse,
    CustomerMappingStats,
    CustomerMappingStatus,
    CustomerMatchingRunResult,
    ManualMappingCreate,
    MappingApproveRequest,
    MappingBulkApproveRequest,
    MappingCustomerUpdate,
    MappingRejectRequest,
)
from services.customer_matching_service import get_customer_matching_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/customer-mappings", tags=["Customer Mappings"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# MATCHING
# ===================

@router.post("/run", response_model=CustomerMatchingRunResult)
async def run_matching():
    """
    Match every active ledger customer organization to QuickBooks.

    Approved and rejected mappings are left untouched.
    """
    try:
        service = get_customer_matching_service()
        result = service.run_matching()

        logger.info("customer_matching_run_via_api", mappings=result.total_mappings)

        return result

    except Exception as e:
        return handle_error(e)


@router.delete("")
async def clear_all_mappings():
    """Delete proposed and needs_review mappings."""
    try:
        service = get_customer_matching_service()
        return {"deleted": service.clear_all_mappings()}

    except Exception as e:
        return handle_error(e)


@router.delete("/all")
async def force_delete_all_mappings():
    """Delete every mapping, human decisions included."""
    try:
        service = get_customer_matching_service()
        return {"deleted": service.force_delete_all_mappings()}

    except Exception as e:
        return handle_error(e)


# ===================
# QUERIES
# ===================

@router.get("", response_model=list[CustomerMappingResponse])
async def list_mappings(
    status: Optional[CustomerMappingStatus] = Query(None, description="Filter by mapping status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """List mappings, highest confidence first."""
    try:
        service = get_customer_matching_service()
        return service.get_customer_mappings(status=status, limit=limit, offset=offset)

    except Exception as e:
        return handle_error(e)


@router.get("/stats", response_model=CustomerMappingStats)
async def get_stats():
    try:
        service = get_customer_matching_service()
        return service.get_mapping_stats()

    except Exception as e:
        return handle_error(e)


@router.get("/{mapping_id}", response_model=CustomerMappingResponse)
async def get_mapping(mapping_id: int):
    try:
        service = get_customer_matching_service()
        return service.get_mapping(mapping_id)

    except Exception as e:
        return handle_error(e)


# ===================
# REVIEW ACTIONS
# ===================

@router.post("/bulk-approve")
async def bulk_approve(data: MappingBulkApproveRequest):
    """Approve several mappings at once. Unknown ids are skipped."""
    try:
        service = get_customer_matching_service()
        approved = service.bulk_approve(data.mapping_ids, data.approved_by)
        return {"approved": approved, "requested": len(data.mapping_ids)}

    except Exception as e:
        return handle_error(e)


@router.post("/manual", response_model=CustomerMappingResponse)
async def create_manual_mapping(data: ManualMappingCreate):
    """
    Link an organization to a QuickBooks customer chosen by a reviewer.

    Returns 404 when either side does not exist.
    """
    try:
        service = get_customer_matching_service()
        return service.create_manual_mapping(
            data.atek_organization_id,
            data.quickbooks_customer_id,
            data.approved_by,
        )

    except Exception as e:
        return handle_error(e)


@router.post("/{mapping_id}/approve", response_model=CustomerMappingResponse)
async def approve_mapping(mapping_id: int, data: MappingApproveRequest):
    try:
        service = get_customer_matching_service()
        return service.approve_mapping(mapping_id, data.approved_by)

    except Exception as e:
        return handle_error(e)


@router.post("/{mapping_id}/reject", response_model=CustomerMappingResponse)
async def reject_mapping(mapping_id: int, data: MappingRejectRequest):
    try:
        service = get_customer_matching_service()
        return service.reject_mapping(mapping_id, data.notes)

    except Exception as e:
        return handle_error(e)


@router.patch("/{mapping_id}/customer", response_model=CustomerMappingResponse)
async def update_mapping_customer(mapping_id: int, data: MappingCustomerUpdate):
    """Repoint a mapping to another QuickBooks customer."""
    try:
        service = get_customer_matching_service()
        return service.update_mapping_qb_customer(
            mapping_id,
            data.quickbooks_customer_id,
            data.quickbooks_customer_name,
        )

    except Exception as e:
        return handle_error(e)
