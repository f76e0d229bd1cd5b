"""
SKU mapping API routes.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.sku_mapping import (
    SkuApproveAllResult,
    SkuMappingResponse,
    SkuMappingStatus,
    SkuMatchApproval,
    SkuMatchResult,
    SkuMatchStats,
)
from services.sku_matching_service import get_sku_matching_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sku-mappings", tags=["SKU Mappings"])


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
# ROUTES
# ===================

@router.get("/matches", response_model=list[SkuMatchResult])
async def list_matches():
    """
    Suggested QuickBooks item for every SKU used on sync-eligible invoices.

    Nothing is stored; approve a match to persist it.
    """
    try:
        service = get_sku_matching_service()
        return service.match_invoice_skus_with_qb_items()

    except Exception as e:
        return handle_error(e)


@router.get("/stats", response_model=SkuMatchStats)
async def get_stats():
    try:
        service = get_sku_matching_service()
        return service.get_sku_match_stats()

    except Exception as e:
        return handle_error(e)


@router.get("/income-accounts")
async def list_income_accounts():
    """QuickBooks income accounts as {value, name} for the item create form."""
    try:
        service = get_sku_matching_service()
        return service.get_income_accounts()

    except Exception as e:
        return handle_error(e)


@router.get("", response_model=list[SkuMappingResponse])
async def list_mappings(
    status: Optional[SkuMappingStatus] = Query(None, description="Filter by mapping status"),
):
    try:
        service = get_sku_matching_service()
        return service.get_sku_mappings(status)

    except Exception as e:
        return handle_error(e)


@router.post("/approve", response_model=SkuMappingResponse)
async def approve_match(data: SkuMatchApproval):
    try:
        service = get_sku_matching_service()
        return service.approve_match(data)

    except Exception as e:
        return handle_error(e)


@router.post("/approve-all", response_model=SkuApproveAllResult)
async def approve_all_matches(
    approved_by: Optional[str] = Query(None, description="Reviewer name or email"),
):
    """Approve every suggested match not already approved."""
    try:
        service = get_sku_matching_service()
        result = service.approve_all_matches(approved_by)

        logger.info("sku_matches_approved_via_api", approved=result.approved_count)

        return result

    except Exception as e:
        return handle_error(e)
