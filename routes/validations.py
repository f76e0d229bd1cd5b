"""
Invoice validation API routes.

Validation never fails for mapping problems: those come back as
blocking issues in the result body.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.invoice_validation import (
    InvoiceValidationResponse,
    MarkSyncedRequest,
    SyncApprovalRequest,
    ValidateBatchRequest,
    ValidatePendingRequest,
    ValidationBatchResult,
    ValidationResult,
    ValidationStats,
    ValidationStatus,
)
from models.match_log import MatchLogResponse
from services.invoice_validation_service import get_invoice_validation_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/validations", tags=["Validations"])


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
# VALIDATE
# ===================

@router.post("/batch", response_model=ValidationBatchResult)
async def validate_batch(data: ValidateBatchRequest):
    try:
        service = get_invoice_validation_service()
        return service.validate_batch(data.invoice_ids)

    except Exception as e:
        return handle_error(e)


@router.post("/pending", response_model=ValidationBatchResult)
async def validate_pending(data: ValidatePendingRequest):
    """Validate invoices that have never been validated."""
    try:
        service = get_invoice_validation_service()
        result = service.validate_all_pending(
            limit=data.limit,
            start_date=data.start_date,
            end_date=data.end_date,
        )

        logger.info("pending_invoices_validated_via_api", total=result.total, ready=result.ready)

        return result

    except Exception as e:
        return handle_error(e)


@router.post("/invoices/{invoice_id}", response_model=ValidationResult)
async def validate_invoice(invoice_id: str):
    try:
        service = get_invoice_validation_service()
        return service.validate_invoice(invoice_id)

    except Exception as e:
        return handle_error(e)


# ===================
# QUERIES
# ===================

@router.get("", response_model=list[InvoiceValidationResponse])
async def list_validations(
    status: Optional[ValidationStatus] = Query(None, description="Filter by validation status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    try:
        service = get_invoice_validation_service()
        return service.get_validations(status=status, limit=limit, offset=offset)

    except Exception as e:
        return handle_error(e)


@router.get("/stats", response_model=ValidationStats)
async def get_stats():
    try:
        service = get_invoice_validation_service()
        return service.get_validation_stats()

    except Exception as e:
        return handle_error(e)


@router.get("/ready", response_model=list[InvoiceValidationResponse])
async def get_ready(limit: int = Query(100, ge=1, le=1000)):
    try:
        service = get_invoice_validation_service()
        return service.get_ready_for_sync(limit)

    except Exception as e:
        return handle_error(e)


@router.get("/blocked", response_model=list[InvoiceValidationResponse])
async def get_blocked(limit: int = Query(100, ge=1, le=1000)):
    try:
        service = get_invoice_validation_service()
        return service.get_blocked_invoices(limit)

    except Exception as e:
        return handle_error(e)


@router.get("/invoices/{invoice_id}", response_model=InvoiceValidationResponse)
async def get_validation(invoice_id: str):
    try:
        service = get_invoice_validation_service()
        return service.get_validation_status(invoice_id)

    except Exception as e:
        return handle_error(e)


@router.get("/invoices/{invoice_id}/history", response_model=list[MatchLogResponse])
async def get_validation_history(invoice_id: str):
    try:
        service = get_invoice_validation_service()
        return service.get_validation_history(invoice_id)

    except Exception as e:
        return handle_error(e)


# ===================
# STATE CHANGES
# ===================

@router.post("/invoices/{invoice_id}/approve", response_model=InvoiceValidationResponse)
async def approve_for_sync(invoice_id: str, data: SyncApprovalRequest):
    """Approve a ready invoice for sync. 422 when it is not ready."""
    try:
        service = get_invoice_validation_service()
        return service.approve_for_sync(invoice_id, data.approved_by)

    except Exception as e:
        return handle_error(e)


@router.post("/invoices/{invoice_id}/synced", response_model=InvoiceValidationResponse)
async def mark_synced(invoice_id: str, data: MarkSyncedRequest):
    try:
        service = get_invoice_validation_service()
        return service.mark_as_synced(invoice_id, data.quickbooks_invoice_id)

    except Exception as e:
        return handle_error(e)


@router.delete("/invoices/{invoice_id}")
async def clear_validation(invoice_id: str):
    try:
        service = get_invoice_validation_service()
        return {"deleted": service.clear_validation(invoice_id)}

    except Exception as e:
        return handle_error(e)


@router.delete("")
async def clear_all_validations():
    """Delete every non-synced validation."""
    try:
        service = get_invoice_validation_service()
        return {"deleted": service.clear_all_validations()}

    except Exception as e:
        return handle_error(e)
