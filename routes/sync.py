"""
Invoice sync API routes.

Sync outcomes (skipped, failed) are returned in the body with 200;
only missing records and unexpected errors produce error responses.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.invoice_sync import (
    BatchSyncResult,
    CreateMissingSkusRequest,
    CustomerCreateInput,
    CustomerCreateResult,
    InvoiceComparison,
    InvoiceDetails,
    InvoiceForSync,
    InvoiceSyncResult,
    MissingSku,
    SkuCreateBatchResult,
    SyncBatchRequest,
    SyncInvoiceRequest,
    SyncStats,
)
from services.invoice_sync_service import get_invoice_sync_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Sync"])


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
# INVOICES
# ===================

@router.get("/invoices", response_model=list[InvoiceForSync])
async def list_invoices(
    status: str = Query("all", pattern="^(all|pending|ready|blocked|synced)$"),
    search: Optional[str] = Query(None, description="Invoice number, organization name or number"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """
    Ledger invoices with validation state and QuickBooks match score.

    match_score is null when no QuickBooks invoice shares the number.
    """
    try:
        service = get_invoice_sync_service()
        return service.list_invoices_with_validation(
            status=status,
            search=search,
            limit=limit,
            offset=offset,
        )

    except Exception as e:
        return handle_error(e)


@router.get("/stats", response_model=SyncStats)
async def get_stats():
    try:
        service = get_invoice_sync_service()
        return service.get_sync_stats()

    except Exception as e:
        return handle_error(e)


@router.get("/duplicates/{invoice_number}")
async def check_duplicate(invoice_number: str):
    """QuickBooks invoice sharing this DocNumber, if any."""
    try:
        service = get_invoice_sync_service()
        existing = service.check_duplicate_in_qb(invoice_number)
        return {
            "exists": existing is not None,
            "quickbooks_invoice_id": existing.get("Id") if existing else None,
        }

    except Exception as e:
        return handle_error(e)


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetails)
async def get_invoice_details(invoice_id: str):
    try:
        service = get_invoice_sync_service()
        return service.get_invoice_details(invoice_id)

    except Exception as e:
        return handle_error(e)


@router.get("/invoices/{invoice_id}/compare", response_model=InvoiceComparison)
async def compare_invoice(
    invoice_id: str,
    qb_invoice_id: Optional[str] = Query(None, description="Defaults to a DocNumber search"),
):
    try:
        service = get_invoice_sync_service()
        return service.compare_invoice(invoice_id, qb_invoice_id)

    except Exception as e:
        return handle_error(e)


# ===================
# SYNC
# ===================

@router.post("/invoices/{invoice_id}", response_model=InvoiceSyncResult)
async def sync_invoice(invoice_id: str, data: Optional[SyncInvoiceRequest] = None):
    """
    Push one invoice to QuickBooks.

    An existing QuickBooks invoice with the same number is updated in place.
    """
    try:
        options = data or SyncInvoiceRequest()
        service = get_invoice_sync_service()
        return service.sync_invoice(
            invoice_id,
            customer_id_override=options.customer_id_override,
            force=options.force,
        )

    except Exception as e:
        return handle_error(e)


@router.post("/batch", response_model=BatchSyncResult)
async def sync_batch(data: SyncBatchRequest):
    try:
        service = get_invoice_sync_service()
        return service.sync_batch(data.invoice_ids)

    except Exception as e:
        return handle_error(e)


@router.post("/ready", response_model=BatchSyncResult)
async def sync_all_ready(limit: int = Query(50, ge=1, le=500)):
    try:
        service = get_invoice_sync_service()
        result = service.sync_all_ready(limit)

        logger.info("ready_invoices_synced_via_api", successful=result.successful, failed=result.failed)

        return result

    except Exception as e:
        return handle_error(e)


# ===================
# INLINE CREATION
# ===================

@router.get("/invoices/{invoice_id}/missing-skus", response_model=list[MissingSku])
async def get_missing_skus(invoice_id: str):
    try:
        service = get_invoice_sync_service()
        return service.get_missing_skus_for_invoice(invoice_id)

    except Exception as e:
        return handle_error(e)


@router.post("/invoices/{invoice_id}/skus", response_model=SkuCreateBatchResult)
async def create_missing_skus(invoice_id: str, data: CreateMissingSkusRequest):
    """Create QuickBooks items for unmapped SKUs and approve the mappings."""
    try:
        service = get_invoice_sync_service()
        return service.create_missing_skus_for_invoice(invoice_id, data.items)

    except Exception as e:
        return handle_error(e)


@router.post("/invoices/{invoice_id}/customer", response_model=CustomerCreateResult)
async def create_customer(invoice_id: str, data: CustomerCreateInput):
    """Create a QuickBooks customer for the invoice's organization and map it."""
    try:
        service = get_invoice_sync_service()
        return service.create_customer_for_invoice(invoice_id, data)

    except Exception as e:
        return handle_error(e)
