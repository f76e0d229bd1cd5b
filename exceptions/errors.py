"""
Custom exception classes for the application.

Mapping problems found while validating an invoice are NOT exceptions;
they are returned as blocking issues. Exceptions here cover missing
records, illegal transitions and failures of the external systems.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        code: Error code (e.g., "INVOICE_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# LEDGER ERRORS
# ===================

class InvoiceNotFoundError(NotFoundError):
    """Ledger invoice not found."""

    def __init__(self, invoice_id: str):
        super().__init__(
            resource="Invoice",
            identifier=invoice_id,
            code="INVOICE_NOT_FOUND"
        )


class OrganizationNotFoundError(NotFoundError):
    """Ledger organization not found."""

    def __init__(self, organization_id: str):
        super().__init__(
            resource="Organization",
            identifier=organization_id,
            code="ORGANIZATION_NOT_FOUND"
        )


class LedgerConnectionError(ExternalServiceError):
    """Ledger document store unreachable."""

    def __init__(self, message: str):
        super().__init__(service="ledger", message=message)


# ===================
# MAPPING ERRORS
# ===================

class MappingNotFoundError(NotFoundError):
    """Customer or SKU mapping row not found."""

    def __init__(self, mapping_id: Any, kind: str = "customer"):
        super().__init__(
            resource="Mapping",
            identifier=str(mapping_id),
            code=f"{kind.upper()}_MAPPING_NOT_FOUND"
        )


class ValidationNotFoundError(NotFoundError):
    """No validation row for an invoice."""

    def __init__(self, invoice_id: str):
        super().__init__(
            resource="Validation",
            identifier=invoice_id,
            code="VALIDATION_NOT_FOUND"
        )


class InvalidStatusTransitionError(ValidationError):
    """Status change not allowed from the current state."""

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot move from {current_status} to {target_status}",
            details={"current": current_status, "target": target_status}
        )


# ===================
# QUICKBOOKS ERRORS
# ===================

class QuickBooksError(ExternalServiceError):
    """QuickBooks API call failed."""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.http_status = http_status
        super().__init__(
            service="quickbooks",
            message=message,
            details={"http_status": http_status, **(details or {})}
        )


class TransientQuickBooksError(QuickBooksError):
    """Rate limit, timeout, network or 5xx failure. Safe to retry."""
    pass


class QuickBooksNotConfiguredError(QuickBooksError):
    """Realm ID or access token missing."""

    def __init__(self):
        super().__init__(message="QuickBooks is not connected")
        self.code = "QUICKBOOKS_NOT_CONFIGURED"


class QuickBooksCustomerNotFoundError(NotFoundError):
    """QuickBooks customer not found."""

    def __init__(self, customer_id: str):
        super().__init__(
            resource="QuickBooks customer",
            identifier=customer_id,
            code="QB_CUSTOMER_NOT_FOUND"
        )


# ===================
# SYNC ERRORS
# ===================

class MissingSkuMappingsError(ValidationError):
    """Invoice lines reference SKUs without an approved QuickBooks item."""

    def __init__(self, skus: list[str]):
        self.skus = skus
        super().__init__(
            code="MISSING_SKU_MAPPINGS",
            message=f"Missing SKU mappings: {', '.join(skus)}",
            details={"skus": skus}
        )
