"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ExternalServiceError,
    DatabaseError,

    # Ledger
    InvoiceNotFoundError,
    OrganizationNotFoundError,
    LedgerConnectionError,

    # Mappings / validation
    MappingNotFoundError,
    ValidationNotFoundError,
    InvalidStatusTransitionError,

    # QuickBooks
    QuickBooksError,
    TransientQuickBooksError,
    QuickBooksNotConfiguredError,
    QuickBooksCustomerNotFoundError,

    # Sync
    MissingSkuMappingsError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    "DatabaseError",

    # Ledger
    "InvoiceNotFoundError",
    "OrganizationNotFoundError",
    "LedgerConnectionError",

    # Mappings / validation
    "MappingNotFoundError",
    "ValidationNotFoundError",
    "InvalidStatusTransitionError",

    # QuickBooks
    "QuickBooksError",
    "TransientQuickBooksError",
    "QuickBooksNotConfiguredError",
    "QuickBooksCustomerNotFoundError",

    # Sync
    "MissingSkuMappingsError",
]
