"""
Invoice validation service.

Decides whether a ledger invoice can be pushed to QuickBooks. Mapping
problems are never raised: they come back as blocking issues with a
stable code, and the verdict is stored in invoice_validation.

Severity "error" blocks sync; "warning" is surfaced only.
"""

import time
from datetime import datetime
from typing import Optional
import structlog

from config import INVOICE_VALIDATION_TABLE
from exceptions import (
    InvalidStatusTransitionError,
    InvoiceNotFoundError,
    ValidationNotFoundError,
)
from integrations.ledger import LedgerClient, get_ledger_client
from models.customer_mapping import CustomerMappingStatus
from models.invoice_validation import (
    BlockingIssue,
    CustomerCheck,
    CustomerDetails,
    InvoiceValidationResponse,
    IssueCode,
    IssueSeverity,
    IssueType,
    SkuCheck,
    SkuSummary,
    ValidationBatchResult,
    ValidationResult,
    ValidationStats,
    ValidationStatus,
)
from models.ledger import InvoiceStatus, LedgerInvoice, LedgerLineItem, SYNC_ELIGIBLE_STATUSES
from models.match_log import MatchEntityType, MatchLogCreate, MatchLogResponse
from models.sku_mapping import SkuMappingStatus
from services.customer_matching_service import CustomerMatchingService
from services.mapping_store import MappingStore, UpsertAction, get_mapping_store, is_synced, utc_now
from services.match_log_service import MatchLogService
from services.sku_matching_service import SkuMatchingService
from services.tax_service import calculate_quebec_taxes, round_cents

logger = structlog.get_logger(__name__)

CUSTOMER_WEIGHT = 0.4
SKU_WEIGHT = 0.6
TAX_TOLERANCE = 0.01

NON_SYNCED_STATUSES = (
    ValidationStatus.PENDING.value,
    ValidationStatus.READY.value,
    ValidationStatus.BLOCKED.value,
)


def _issue(
    issue_type: IssueType,
    code: IssueCode,
    message: str,
    severity: IssueSeverity = IssueSeverity.ERROR,
    details: Optional[dict] = None,
) -> BlockingIssue:
    return BlockingIssue(type=issue_type, severity=severity, code=code, message=message, details=details)


def check_status(invoice: LedgerInvoice) -> list[BlockingIssue]:
    """Only sent, paid, partial and overdue invoices may sync."""
    if invoice.status in SYNC_ELIGIBLE_STATUSES:
        return []

    if invoice.status == InvoiceStatus.DRAFT.value:
        return [_issue(IssueType.INVOICE_STATUS, IssueCode.INVOICE_DRAFT, "Invoice is in draft status")]

    if invoice.status in (InvoiceStatus.CANCELLED.value, InvoiceStatus.VOID.value):
        return [_issue(IssueType.INVOICE_STATUS, IssueCode.INVOICE_CANCELLED, f"Invoice is {invoice.status}")]

    return [_issue(
        IssueType.INVOICE_STATUS,
        IssueCode.INVOICE_INVALID_STATUS,
        f"Invalid invoice status: {invoice.status}",
    )]


def check_data_quality(invoice: LedgerInvoice) -> list[BlockingIssue]:
    issues = []

    if not invoice.line_items:
        issues.append(_issue(IssueType.DATA_QUALITY, IssueCode.MISSING_LINE_ITEMS, "Invoice has no line items"))

    if not invoice.invoice_number:
        issues.append(_issue(
            IssueType.DATA_QUALITY,
            IssueCode.MISSING_INVOICE_NUMBER,
            "Invoice has no invoice number",
            IssueSeverity.WARNING,
        ))

    if invoice.total <= 0:
        issues.append(_issue(
            IssueType.DATA_QUALITY,
            IssueCode.ZERO_TOTAL,
            "Invoice total is zero or negative",
            IssueSeverity.WARNING,
        ))

    return issues


def check_tax(invoice: LedgerInvoice) -> list[BlockingIssue]:
    """
    Compare reported tax with tax recomputed from the subtotal.

    QuickBooks always receives the recomputed figures, so a difference
    is a warning for the reviewer, not a blocker.
    """
    if not invoice.is_taxable:
        return []

    expected = calculate_quebec_taxes(invoice.subtotal).total_tax
    reported = round_cents(invoice.tax_amount)
    if abs(expected - reported) <= round_cents(TAX_TOLERANCE):
        return []

    return [_issue(
        IssueType.DATA_QUALITY,
        IssueCode.TAX_MISMATCH,
        f"Reported tax {reported} differs from expected {expected}",
        IssueSeverity.WARNING,
        {"reported": float(reported), "expected": float(expected)},
    )]


def calculate_confidence(customer_valid: bool, mapped: int, total: int) -> float:
    sku_ratio = mapped / total if total else 1.0
    return CUSTOMER_WEIGHT * (1.0 if customer_valid else 0.0) + SKU_WEIGHT * sku_ratio


class InvoiceValidationService:
    """
    Invoice validation business logic.

    Handles:
    - Customer, SKU, status, data-quality and tax checks
    - Storing verdicts (synced rows are never overwritten)
    - Sync approval and synced marking
    """

    def __init__(
        self,
        store: Optional[MappingStore] = None,
        ledger: Optional[LedgerClient] = None,
        customer_matching: Optional[CustomerMatchingService] = None,
        sku_matching: Optional[SkuMatchingService] = None,
        match_log: Optional[MatchLogService] = None,
    ):
        self.store = store or get_mapping_store()
        self._ledger = ledger
        self.customer_matching = customer_matching or CustomerMatchingService(self.store, ledger=ledger)
        self.sku_matching = sku_matching or SkuMatchingService(self.store, ledger=ledger)
        self.match_log = match_log or MatchLogService(self.store)
        self.table = INVOICE_VALIDATION_TABLE

    @property
    def ledger(self) -> LedgerClient:
        if self._ledger is None:
            self._ledger = get_ledger_client()
        return self._ledger

    # ===================
    # CHECKS
    # ===================

    def check_customer_mapping(self, organization_id: str, manager_id: Optional[str]) -> CustomerCheck:
        if not organization_id:
            return CustomerCheck(is_valid=False, issues=[_issue(
                IssueType.CUSTOMER_MAPPING,
                IssueCode.CUSTOMER_NO_ORG,
                "Invoice has no organization ID",
            )])

        row = self.customer_matching.find_mapping_for_invoice(organization_id, manager_id)
        if not row:
            return CustomerCheck(is_valid=False, issues=[_issue(
                IssueType.CUSTOMER_MAPPING,
                IssueCode.CUSTOMER_NO_MAPPING,
                "No customer mapping found for this organization",
                details={"organization_id": organization_id, "manager_id": manager_id},
            )])

        check = CustomerCheck(
            is_valid=False,
            mapping_id=row.get("mapping_id"),
            quickbooks_customer_id=row.get("quickbooks_customer_id"),
            quickbooks_customer_name=row.get("quickbooks_customer_name"),
            mapping_status=row.get("mapping_status"),
        )

        if check.mapping_status != CustomerMappingStatus.APPROVED.value:
            check.issues.append(_issue(
                IssueType.CUSTOMER_MAPPING,
                IssueCode.CUSTOMER_NOT_APPROVED,
                f"Customer mapping not approved (status: {check.mapping_status})",
                details={"mapping_id": check.mapping_id},
            ))
        elif not check.quickbooks_customer_id:
            check.issues.append(_issue(
                IssueType.CUSTOMER_MAPPING,
                IssueCode.CUSTOMER_NO_QB_LINK,
                "Customer mapping approved but no QuickBooks customer linked",
                details={"mapping_id": check.mapping_id},
            ))
        else:
            check.is_valid = True

        return check

    def check_sku_mappings(self, line_items: list[LedgerLineItem]) -> SkuCheck:
        """
        Classify the distinct SKUs on an invoice.

        SKUs are grouped by code, falling back to id. needs_creation SKUs
        are surfaced as a warning and do not make the set incomplete.
        """
        distinct: dict[str, LedgerLineItem] = {}
        for item in line_items:
            distinct.setdefault(item.sku_key, item)

        check = SkuCheck(is_complete=True)
        mapped = 0

        for key, item in distinct.items():
            row = self.sku_matching.find_mapping(item.sku_code, item.sku_id)
            if not row:
                check.missing.append(key)
            elif row.get("mapping_status") == SkuMappingStatus.NEEDS_CREATION.value:
                check.needs_creation.append(key)
            elif row.get("mapping_status") != SkuMappingStatus.APPROVED.value or not row.get("quickbooks_item_id"):
                check.not_approved.append(key)
            else:
                mapped += 1

        if check.missing:
            check.issues.append(_issue(
                IssueType.SKU_MAPPING,
                IssueCode.SKU_NO_MAPPING,
                f"{len(check.missing)} SKU(s) missing mappings",
                details={"count": len(check.missing), "skus": check.missing},
            ))

        if check.not_approved:
            check.issues.append(_issue(
                IssueType.SKU_MAPPING,
                IssueCode.SKU_NOT_APPROVED,
                f"{len(check.not_approved)} SKU mapping(s) pending approval",
                details={"count": len(check.not_approved), "skus": check.not_approved},
            ))

        if check.needs_creation:
            check.issues.append(_issue(
                IssueType.SKU_MAPPING,
                IssueCode.SKU_NEEDS_CREATION,
                f"{len(check.needs_creation)} SKU(s) need QB item creation",
                IssueSeverity.WARNING,
                {"count": len(check.needs_creation), "skus": check.needs_creation},
            ))

        check.is_complete = not check.missing and not check.not_approved
        check.summary = SkuSummary(
            total=len(distinct),
            mapped=mapped,
            pending=len(distinct) - mapped,
            needs_creation=len(check.needs_creation),
        )
        return check

    # ===================
    # VALIDATION
    # ===================

    def validate_invoice(self, invoice_id: str) -> ValidationResult:
        """
        Validate one invoice and store the verdict.

        Raises:
            InvoiceNotFoundError: Invoice not in the ledger
        """
        invoice = self.ledger.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id)
        return self.validate_loaded_invoice(invoice)

    def validate_loaded_invoice(self, invoice: LedgerInvoice) -> ValidationResult:
        started = time.perf_counter()

        customer = self.check_customer_mapping(invoice.organization_id, invoice.manager_id)
        skus = self.check_sku_mappings(invoice.line_items)

        issues = [
            *customer.issues,
            *skus.issues,
            *check_status(invoice),
            *check_data_quality(invoice),
            *check_tax(invoice),
        ]
        blocked = any(issue.is_blocking for issue in issues)
        status = ValidationStatus.BLOCKED if blocked else ValidationStatus.READY

        result = ValidationResult(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=status,
            customer_mapping_validated=customer.is_valid,
            all_skus_mapped=skus.is_complete,
            blocking_issues=issues,
            confidence_score=calculate_confidence(customer.is_valid, skus.summary.mapped, skus.summary.total),
            ready_for_sync=status == ValidationStatus.READY,
            customer_details=CustomerDetails(
                mapping_id=customer.mapping_id,
                atek_organization_id=invoice.organization_id or None,
                atek_organization_name=invoice.organization_name,
                quickbooks_customer_id=customer.quickbooks_customer_id,
                quickbooks_customer_name=customer.quickbooks_customer_name,
                mapping_status=customer.mapping_status,
            ) if customer.mapping_id is not None else None,
            sku_summary=skus.summary,
        )

        self._store_result(invoice, result)
        self._log_validation(invoice, result, customer, skus, started)

        logger.info(
            "invoice_validated",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=result.status.value,
            issues=len(issues),
            confidence=round(result.confidence_score, 4)
        )
        return result

    def _store_result(self, invoice: LedgerInvoice, result: ValidationResult) -> None:
        row, action = self.store.upsert(
            self.table,
            {"atek_invoice_id": invoice.id},
            {
                "atek_invoice_number": invoice.invoice_number,
                "validation_status": result.status.value,
                "customer_mapping_validated": result.customer_mapping_validated,
                "all_skus_mapped": result.all_skus_mapped,
                "blocking_issues": [issue.model_dump(mode="json") for issue in result.blocking_issues],
                "confidence_score": result.confidence_score,
                "ready_for_sync": result.ready_for_sync,
            },
            preserve_if=is_synced,
        )

        if action == UpsertAction.PRESERVED:
            logger.info("validation_preserved_synced", invoice_id=invoice.id)
            result.status = ValidationStatus.SYNCED
            result.ready_for_sync = False

    def _log_validation(
        self,
        invoice: LedgerInvoice,
        result: ValidationResult,
        customer: CustomerCheck,
        skus: SkuCheck,
        started: float,
    ) -> None:
        self.match_log.record(MatchLogCreate(
            entity_type=MatchEntityType.INVOICE,
            atek_entity_id=invoice.id,
            total_candidates=skus.summary.total,
            best_match_id=customer.quickbooks_customer_id,
            best_match_score=result.confidence_score,
            matching_criteria_used={
                "customer_valid": customer.is_valid,
                "skus_complete": skus.is_complete,
                "issue_codes": [issue.code.value for issue in result.blocking_issues],
            },
            execution_time_ms=int((time.perf_counter() - started) * 1000),
            notes=f"status={result.status.value}",
        ))

    def _failed_result(self, invoice_id: str, error: Exception, invoice_number: Optional[str] = None) -> ValidationResult:
        logger.error("invoice_validation_failed", invoice_id=invoice_id, error=str(error))
        return ValidationResult(
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            status=ValidationStatus.PENDING,
            customer_mapping_validated=False,
            all_skus_mapped=False,
            confidence_score=0,
            ready_for_sync=False,
            error=str(error),
        )

    def _summarize(self, results: list[ValidationResult]) -> ValidationBatchResult:
        validated = [r for r in results if r.error is None]
        return ValidationBatchResult(
            total=len(results),
            ready=sum(1 for r in validated if r.status == ValidationStatus.READY),
            blocked=sum(1 for r in validated if r.status == ValidationStatus.BLOCKED),
            pending=sum(1 for r in validated if r.status == ValidationStatus.PENDING),
            failed=len(results) - len(validated),
            results=results,
        )

    def validate_batch(self, invoice_ids: list[str]) -> ValidationBatchResult:
        """Validate several invoices. A failing invoice gets a result carrying its error."""
        results = []

        for invoice_id in invoice_ids:
            try:
                results.append(self.validate_invoice(invoice_id))
            except Exception as e:
                results.append(self._failed_result(invoice_id, e))

        return self._summarize(results)

    def validate_all_pending(
        self,
        limit: int = 100,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ValidationBatchResult:
        """Validate sync-eligible invoices that have no validation row yet."""
        validated_ids = [row["atek_invoice_id"] for row in self.store.find(self.table)]
        invoices = self.ledger.list_invoices(
            start_date=start_date,
            end_date=end_date,
            exclude_ids=validated_ids,
            limit=limit,
        )

        logger.info("validating_pending_invoices", count=len(invoices), already_validated=len(validated_ids))

        results = []
        for invoice in invoices:
            try:
                results.append(self.validate_loaded_invoice(invoice))
            except Exception as e:
                results.append(self._failed_result(invoice.id, e, invoice.invoice_number))

        return self._summarize(results)

    # ===================
    # QUERIES
    # ===================

    def find_validation(self, invoice_id: str) -> Optional[InvoiceValidationResponse]:
        row = self.store.find_one(self.table, {"atek_invoice_id": invoice_id})
        return InvoiceValidationResponse(**row) if row else None

    def get_validation_status(self, invoice_id: str) -> InvoiceValidationResponse:
        validation = self.find_validation(invoice_id)
        if not validation:
            raise ValidationNotFoundError(invoice_id)
        return validation

    def get_validations(
        self,
        status: Optional[ValidationStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InvoiceValidationResponse]:
        filters = {"validation_status": status.value} if status else None
        rows = self.store.find(
            self.table,
            filters=filters,
            order_by="last_modified_date",
            desc=True,
            limit=limit,
            offset=offset,
        )
        return [InvoiceValidationResponse(**row) for row in rows]

    def get_ready_for_sync(self, limit: int = 100) -> list[InvoiceValidationResponse]:
        rows = self.store.find(
            self.table,
            filters={"validation_status": ValidationStatus.READY.value, "ready_for_sync": True},
            order_by="confidence_score",
            desc=True,
            limit=limit,
        )
        return [InvoiceValidationResponse(**row) for row in rows]

    def get_blocked_invoices(self, limit: int = 100) -> list[InvoiceValidationResponse]:
        return self.get_validations(ValidationStatus.BLOCKED, limit=limit)

    def get_validation_history(self, invoice_id: str) -> list[MatchLogResponse]:
        """Audit rows for every validation pass on this invoice, newest first."""
        return self.match_log.list_for_entity(MatchEntityType.INVOICE, invoice_id)

    def get_validation_stats(self) -> ValidationStats:
        rows = self.store.find(self.table)
        if not rows:
            return ValidationStats()

        by_status: dict[str, int] = {}
        for row in rows:
            by_status[row.get("validation_status")] = by_status.get(row.get("validation_status"), 0) + 1

        scores = [float(row.get("confidence_score") or 0) for row in rows]

        return ValidationStats(
            total=len(rows),
            pending=by_status.get("pending", 0),
            ready=by_status.get("ready", 0),
            blocked=by_status.get("blocked", 0),
            synced=by_status.get("synced", 0),
            avg_confidence=round(sum(scores) / len(scores), 4),
            ready_for_sync=sum(1 for row in rows if row.get("ready_for_sync")),
        )

    # ===================
    # STATE CHANGES
    # ===================

    def approve_for_sync(self, invoice_id: str, approved_by: str) -> InvoiceValidationResponse:
        """
        Record who approved a ready invoice for sync.

        Raises:
            ValidationNotFoundError: Invoice never validated
            InvalidStatusTransitionError: Validation is not ready
        """
        current = self.get_validation_status(invoice_id)
        if current.validation_status != ValidationStatus.READY:
            raise InvalidStatusTransitionError(current.validation_status.value, "approved")

        rows = self.store.update(self.table, {"atek_invoice_id": invoice_id}, {
            "ready_for_sync": True,
            "sync_approved_by": approved_by,
            "sync_approved_date": utc_now(),
        })
        logger.info("invoice_approved_for_sync", invoice_id=invoice_id, approved_by=approved_by)
        return InvoiceValidationResponse(**rows[0])

    def mark_as_synced(
        self,
        invoice_id: str,
        quickbooks_invoice_id: str,
        invoice_number: Optional[str] = None,
    ) -> InvoiceValidationResponse:
        """Set the terminal synced state, creating the row if needed."""
        data = {
            "validation_status": ValidationStatus.SYNCED.value,
            "quickbooks_invoice_id": quickbooks_invoice_id,
            "sync_date": utc_now(),
            "ready_for_sync": False,
        }
        if invoice_number:
            data["atek_invoice_number"] = invoice_number

        row, _ = self.store.upsert(self.table, {"atek_invoice_id": invoice_id}, data)
        logger.info("invoice_marked_synced", invoice_id=invoice_id, qb_invoice_id=quickbooks_invoice_id)
        return InvoiceValidationResponse(**row)

    def clear_validation(self, invoice_id: str) -> int:
        """Delete one validation row so the invoice is validated again."""
        deleted = self.store.delete(self.table, filters={"atek_invoice_id": invoice_id})
        logger.info("validation_cleared", invoice_id=invoice_id, deleted=deleted)
        return deleted

    def clear_all_validations(self) -> int:
        """Delete every non-synced validation and the invoice audit trail."""
        deleted = self.store.delete(self.table, in_filters={"validation_status": NON_SYNCED_STATUSES})
        self.match_log.clear(MatchEntityType.INVOICE)
        logger.info("validations_cleared", deleted=deleted)
        return deleted


# Singleton instance
_invoice_validation_service: Optional[InvoiceValidationService] = None


def get_invoice_validation_service() -> InvoiceValidationService:
    """Get or create InvoiceValidationService instance."""
    global _invoice_validation_service
    if _invoice_validation_service is None:
        _invoice_validation_service = InvoiceValidationService()
    return _invoice_validation_service
