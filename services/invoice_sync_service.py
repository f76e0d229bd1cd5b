"""
Invoice sync service.

Pushes ledger invoices to QuickBooks:
1. Resolve the customer (explicit override or approved mapping)
2. Look for an invoice with the same DocNumber in QuickBooks
3. Build the payload from approved SKU mappings
4. Update the existing invoice in place, or create one
5. Mark the validation row synced

Nothing is persisted locally when the QuickBooks write fails.
"""

from typing import Optional
import structlog

from config import settings
from exceptions import (
    InvoiceNotFoundError,
    MissingSkuMappingsError,
    OrganizationNotFoundError,
    QuickBooksError,
)
from integrations.ledger import LedgerClient, get_ledger_client
from integrations.quickbooks import QuickBooksClient, get_quickbooks_client
from models.invoice_sync import (
    BatchSyncResult,
    CustomerCreateInput,
    CustomerCreateResult,
    CustomerResolution,
    InvoiceComparison,
    InvoiceDetails,
    InvoiceForSync,
    InvoiceSyncResult,
    LineItemMapping,
    LineItemWithMapping,
    MissingSku,
    QuickBooksInvoiceView,
    QuickBooksLineView,
    SkippedReason,
    SkuCreateBatchResult,
    SkuCreateInput,
    SkuCreateOutcome,
    SyncStats,
)
from models.invoice_validation import ValidationStatus
from models.ledger import LedgerInvoice
from models.sku_mapping import SkuMappingStatus
from parsers.address_parser import parse_address_to_qb
from services.customer_matching_service import CustomerMatchingService, resolve_mapping
from services.invoice_validation_service import InvoiceValidationService
from services.mapping_store import MappingStore, get_mapping_store
from services.sku_matching_service import SkuMatchingService
from services.tax_service import build_txn_tax_detail
from utils.fuzzy_match import pad_org_number

logger = structlog.get_logger(__name__)

SALES_LINE = "SalesItemLineDetail"
SEARCH_FETCH_LIMIT = 1000
STATS_FETCH_LIMIT = 10000

# Weights for the ledger/QuickBooks agreement score
MATCH_WEIGHTS = {
    "invoice_number": 2,
    "issue_date": 1,
    "due_date": 1,
    "subtotal": 2,
    "total": 2,
    "line_count": 1,
}
AMOUNT_TOLERANCE = 0.01  # 1%


def _sales_lines(qb_invoice: dict) -> list[dict]:
    return [line for line in qb_invoice.get("Line") or [] if line.get("DetailType") == SALES_LINE]


def _within(expected: float, actual: float) -> bool:
    return abs(expected - actual) <= abs(expected) * AMOUNT_TOLERANCE


def calculate_match_score(invoice: LedgerInvoice, qb_invoice: dict) -> int:
    """
    Weighted agreement between a ledger invoice and a QuickBooks invoice.

    Returns:
        0-100, rounded. Advisory only.
    """
    lines = _sales_lines(qb_invoice)
    qb_subtotal = sum(float(line.get("Amount") or 0) for line in lines)

    checks = {
        "invoice_number": invoice.invoice_number.lower() == (qb_invoice.get("DocNumber") or "").lower(),
        "issue_date": (invoice.issue_date.isoformat() if invoice.issue_date else None) == qb_invoice.get("TxnDate"),
        "due_date": (invoice.due_date.isoformat() if invoice.due_date else None) == qb_invoice.get("DueDate"),
        "subtotal": _within(invoice.subtotal, qb_subtotal),
        "total": _within(invoice.total, float(qb_invoice.get("TotalAmt") or 0)),
        "line_count": len(invoice.line_items) == len(lines),
    }

    matched = sum(MATCH_WEIGHTS[name] for name, ok in checks.items() if ok)
    return round(matched / sum(MATCH_WEIGHTS.values()) * 100)


def _address_view(address: Optional[dict]) -> Optional[dict[str, str]]:
    if not address:
        return None
    return {
        "line1": address.get("Line1", ""),
        "line2": address.get("Line2", ""),
        "city": address.get("City", ""),
        "state": address.get("CountrySubDivisionCode", ""),
        "postal_code": address.get("PostalCode", ""),
        "country": address.get("Country", ""),
    }


class InvoiceSyncService:
    """
    Invoice sync business logic.

    Handles:
    - Single, batch and ready-queue sync
    - QuickBooks payload construction (lines, tax detail, addresses)
    - Invoice list, details and ledger/QuickBooks comparison
    - Inline creation of missing items and customers
    """

    def __init__(
        self,
        store: Optional[MappingStore] = None,
        ledger: Optional[LedgerClient] = None,
        books: Optional[QuickBooksClient] = None,
        validation: Optional[InvoiceValidationService] = None,
        customer_matching: Optional[CustomerMatchingService] = None,
        sku_matching: Optional[SkuMatchingService] = None,
    ):
        self.store = store or get_mapping_store()
        self._ledger = ledger
        self._books = books
        self.customer_matching = customer_matching or CustomerMatchingService(self.store, ledger=ledger, books=books)
        self.sku_matching = sku_matching or SkuMatchingService(self.store, ledger=ledger, books=books)
        self.validation = validation or InvoiceValidationService(
            self.store,
            ledger=ledger,
            customer_matching=self.customer_matching,
            sku_matching=self.sku_matching,
        )

    @property
    def ledger(self) -> LedgerClient:
        if self._ledger is None:
            self._ledger = get_ledger_client()
        return self._ledger

    @property
    def books(self) -> QuickBooksClient:
        if self._books is None:
            self._books = get_quickbooks_client()
        return self._books

    def _get_invoice(self, invoice_id: str) -> LedgerInvoice:
        invoice = self.ledger.get_invoice(invoice_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    # ===================
    # PAYLOAD
    # ===================

    def _build_line(self, item, mapping: dict) -> dict:
        amount = round(item.amount, 2)
        if amount == 0:
            # Free and demo items: QuickBooks requires Amount == Qty * UnitPrice
            unit_price = 0
        elif item.discount and item.quantity:
            unit_price = round(amount / item.quantity, 5)
        else:
            unit_price = item.unit_price

        return {
            "Amount": amount,
            "Description": item.description or item.sku_name or "",
            "DetailType": SALES_LINE,
            SALES_LINE: {
                "ItemRef": {"value": mapping["quickbooks_item_id"]},
                "Qty": item.quantity,
                "UnitPrice": unit_price,
                "TaxCodeRef": {"value": settings.quickbooks_tax_code_id},
            },
        }

    def build_qb_invoice(self, invoice: LedgerInvoice, customer_id: str) -> dict:
        """
        Build the QuickBooks invoice payload.

        Raises:
            MissingSkuMappingsError: A line has no approved SKU mapping,
                or no line could be mapped at all
        """
        lines = []
        missing: list[str] = []

        for item in invoice.line_items:
            mapping = self.sku_matching.find_mapping(item.sku_code, item.sku_id)
            label = item.sku_key or "Unknown SKU"

            if not mapping or not mapping.get("quickbooks_item_id"):
                missing.append(label)
                continue
            if mapping.get("mapping_status") != SkuMappingStatus.APPROVED.value:
                missing.append(f"{label} (not approved)")
                continue

            lines.append(self._build_line(item, mapping))

        if missing:
            raise MissingSkuMappingsError(missing)
        if not lines:
            raise MissingSkuMappingsError(["no line items could be mapped"])

        payload = {
            "CustomerRef": {"value": customer_id},
            "Line": lines,
            "DocNumber": invoice.invoice_number,
            "TxnTaxDetail": build_txn_tax_detail(invoice.subtotal),
        }

        if invoice.issue_date:
            payload["TxnDate"] = invoice.issue_date.isoformat()
        if invoice.due_date:
            payload["DueDate"] = invoice.due_date.isoformat()

        bill_addr = parse_address_to_qb(invoice.billing_address)
        if bill_addr:
            payload["BillAddr"] = bill_addr
        if invoice.shipping_addresses:
            ship_addr = parse_address_to_qb(invoice.shipping_addresses[0])
            if ship_addr:
                payload["ShipAddr"] = ship_addr

        if invoice.notes:
            payload["CustomerMemo"] = {"value": invoice.notes}
        if invoice.private_notes:
            payload["PrivateNote"] = invoice.private_notes

        return payload

    # ===================
    # SYNC
    # ===================

    def check_duplicate_in_qb(self, invoice_number: str) -> Optional[dict]:
        """
        QuickBooks invoice with the same DocNumber, if any.

        A failed lookup counts as "no duplicate".
        """
        if not invoice_number:
            return None
        try:
            results = self.books.search_invoices(invoice_number)
        except QuickBooksError as e:
            logger.warning("duplicate_check_failed", invoice_number=invoice_number, error=str(e))
            return None

        for qb_invoice in results:
            if (qb_invoice.get("DocNumber") or "").lower() == invoice_number.lower():
                return qb_invoice
        return None

    def sync_invoice(
        self,
        invoice_id: str,
        customer_id_override: Optional[str] = None,
        force: bool = False,
    ) -> InvoiceSyncResult:
        """
        Push one invoice to QuickBooks.

        Args:
            invoice_id: Ledger invoice id
            customer_id_override: QuickBooks customer id, bypassing mappings
            force: Sync again even when already synced

        Raises:
            InvoiceNotFoundError: Invoice not in the ledger
        """
        existing_validation = self.validation.find_validation(invoice_id)
        if (
            not force
            and existing_validation
            and existing_validation.validation_status == ValidationStatus.SYNCED
        ):
            return InvoiceSyncResult(
                atek_invoice_id=invoice_id,
                atek_invoice_number=existing_validation.atek_invoice_number or "",
                skipped_reason=SkippedReason.ALREADY_SYNCED,
                quickbooks_invoice_id=existing_validation.quickbooks_invoice_id,
            )

        invoice = self._get_invoice(invoice_id)
        result = InvoiceSyncResult(atek_invoice_id=invoice.id, atek_invoice_number=invoice.invoice_number)

        # 1. Customer
        if customer_id_override:
            customer_id = customer_id_override
            result.customer_resolution = CustomerResolution.MANUAL_OVERRIDE
        else:
            customer = self.validation.check_customer_mapping(invoice.organization_id, invoice.manager_id)
            if not customer.is_valid:
                result.skipped_reason = SkippedReason.NO_CUSTOMER_MAPPING
                result.error = customer.issues[0].message if customer.issues else "No customer mapping"
                return result
            customer_id = customer.quickbooks_customer_id
            result.customer_resolution = CustomerResolution.MAPPING

        # 2. Existing invoice
        existing = self.check_duplicate_in_qb(invoice.invoice_number)

        # 3. Payload
        try:
            payload = self.build_qb_invoice(invoice, customer_id)
        except MissingSkuMappingsError as e:
            result.skipped_reason = SkippedReason.MISSING_SKU_MAPPINGS
            result.error = e.message
            return result

        # 4. Write
        try:
            if existing:
                qb_invoice = self.books.update_invoice(existing["Id"], existing["SyncToken"], payload)
                result.updated_existing = True
            else:
                qb_invoice = self.books.create_invoice(payload)
        except QuickBooksError as e:
            logger.error("invoice_sync_failed", invoice_id=invoice.id, error=e.message)
            result.error = f"QuickBooks error: {e.message}"
            return result

        # 5. Synced
        self.validation.mark_as_synced(invoice.id, str(qb_invoice["Id"]), invoice.invoice_number)

        result.success = True
        result.quickbooks_invoice_id = str(qb_invoice["Id"])
        result.quickbooks_doc_number = qb_invoice.get("DocNumber")
        result.line_items_created = len(payload["Line"])

        logger.info(
            "invoice_synced",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            qb_invoice_id=result.quickbooks_invoice_id,
            updated_existing=result.updated_existing
        )
        return result

    def sync_batch(self, invoice_ids: list[str]) -> BatchSyncResult:
        """Sync invoices one after another. One failure never stops the batch."""
        results = []
        successful = failed = skipped = 0

        for invoice_id in invoice_ids:
            try:
                result = self.sync_invoice(invoice_id)
            except Exception as e:
                logger.error("invoice_sync_error", invoice_id=invoice_id, error=str(e))
                result = InvoiceSyncResult(atek_invoice_id=invoice_id, error=str(e))

            results.append(result)
            if result.success:
                successful += 1
            elif result.skipped_reason:
                skipped += 1
            else:
                failed += 1

        logger.info(
            "invoice_batch_synced",
            total=len(invoice_ids),
            successful=successful,
            failed=failed,
            skipped=skipped
        )
        return BatchSyncResult(
            total=len(invoice_ids),
            successful=successful,
            failed=failed,
            skipped=skipped,
            results=results,
        )

    def sync_all_ready(self, limit: int = 50) -> BatchSyncResult:
        ready = self.validation.get_ready_for_sync(limit=limit)
        return self.sync_batch([row.atek_invoice_id for row in ready])

    # ===================
    # QUERIES
    # ===================

    def list_invoices_with_validation(
        self,
        status: str = "all",
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[InvoiceForSync]:
        """
        Invoice list for review, filtered and paginated before any
        QuickBooks lookup.
        """
        query = (search or "").strip().lower()
        invoices = self.ledger.list_invoices(limit=SEARCH_FETCH_LIMIT if query else limit + offset)

        organizations = {org.id: org for org in self.ledger.list_organizations()}
        manager_ids = {inv.manager_id for inv in invoices if inv.manager_id}
        managers = {m.id: m for m in self.ledger.get_managers(manager_ids)} if manager_ids else {}

        validations = {
            row["atek_invoice_id"]: row
            for row in self.store.find(self.validation.table)
        }

        mappings_by_org: dict[str, list[dict]] = {}
        for row in self.store.find(self.customer_matching.table):
            mappings_by_org.setdefault(row["atek_organization_id"], []).append(row)

        def find_mapping(inv: LedgerInvoice) -> Optional[dict]:
            return resolve_mapping(mappings_by_org.get(inv.organization_id, []), inv.manager_id, any_manager=True)

        if query:
            def matches(inv: LedgerInvoice) -> bool:
                org = organizations.get(inv.organization_id)
                org_name = (org.name if org else None) or inv.organization_name or ""
                org_number = pad_org_number(org.org_number) if org else ""
                return (
                    query in inv.invoice_number.lower()
                    or query in org_name.lower()
                    or (bool(org_number) and query in org_number)
                )
            invoices = [inv for inv in invoices if matches(inv)]

        if status != "all":
            invoices = [
                inv for inv in invoices
                if (validations.get(inv.id) or {}).get("validation_status", "pending") == status
            ]

        page = invoices[offset:offset + limit]

        qb_invoices: dict[str, dict] = {}
        if self.books.is_configured:
            for number in {inv.invoice_number for inv in page if inv.invoice_number}:
                try:
                    qb_invoice = self.books.find_invoice_by_doc_number(number)
                except QuickBooksError as e:
                    logger.warning("invoice_list_qb_lookup_failed", invoice_number=number, error=str(e))
                    continue
                if qb_invoice:
                    qb_invoices[number.lower()] = qb_invoice

        rows = []
        for inv in page:
            validation = validations.get(inv.id) or {}
            mapping = find_mapping(inv) or {}
            org = organizations.get(inv.organization_id)
            qb_invoice = qb_invoices.get(inv.invoice_number.lower())
            manager = managers.get(inv.manager_id) if inv.manager_id else None

            rows.append(InvoiceForSync(
                id=inv.id,
                invoice_number=inv.invoice_number,
                organization_id=inv.organization_id,
                organization_number=(pad_org_number(org.org_number) or None) if org else None,
                organization_name=mapping.get("atek_organization_name") or (org.name if org else None) or inv.organization_name,
                contractual_manager_id=inv.manager_id,
                contractual_manager_name=manager.name if manager else None,
                issue_date=inv.issue_date,
                due_date=inv.due_date,
                total_amount=inv.total,
                currency=inv.currency,
                line_item_count=len(inv.line_items),
                validation_status=validation.get("validation_status") or "pending",
                customer_mapping_validated=bool(validation.get("customer_mapping_validated")),
                all_skus_mapped=bool(validation.get("all_skus_mapped")),
                blocking_issues=validation.get("blocking_issues") or [],
                quickbooks_invoice_id=validation.get("quickbooks_invoice_id") or (qb_invoice or {}).get("Id"),
                quickbooks_customer_id=mapping.get("quickbooks_customer_id"),
                quickbooks_customer_name=mapping.get("quickbooks_customer_name"),
                sync_date=validation.get("sync_date"),
                match_score=calculate_match_score(inv, qb_invoice) if qb_invoice else None,
            ))

        return rows

    def get_invoice_details(self, invoice_id: str) -> InvoiceDetails:
        """Ledger invoice with per-line SKU mappings, validation and customer mapping."""
        invoice = self._get_invoice(invoice_id)

        line_items = []
        for item in invoice.line_items:
            mapping = self.sku_matching.find_mapping(item.sku_code, item.sku_id)
            line_items.append(LineItemWithMapping(
                **item.model_dump(),
                mapping=LineItemMapping(
                    mapping_id=mapping["mapping_id"],
                    quickbooks_item_id=mapping.get("quickbooks_item_id"),
                    quickbooks_item_name=mapping.get("quickbooks_item_name"),
                    mapping_status=mapping.get("mapping_status"),
                ) if mapping else None,
            ))

        customer = self.validation.check_customer_mapping(invoice.organization_id, invoice.manager_id)

        return InvoiceDetails(
            invoice=invoice,
            line_items=line_items,
            validation=self.validation.find_validation(invoice_id),
            customer_mapping={
                "mapping_id": customer.mapping_id,
                "quickbooks_customer_id": customer.quickbooks_customer_id,
                "quickbooks_customer_name": customer.quickbooks_customer_name,
            } if customer.is_valid else None,
        )

    def _find_qb_invoice(self, invoice: LedgerInvoice, qb_invoice_id: Optional[str]) -> Optional[dict]:
        if qb_invoice_id:
            return self.books.get_invoice(qb_invoice_id)
        if not invoice.invoice_number:
            return None
        return self.books.find_invoice_by_doc_number(invoice.invoice_number) or self.check_duplicate_in_qb(
            invoice.invoice_number
        )

    def _qb_invoice_view(self, qb_invoice: dict) -> QuickBooksInvoiceView:
        customer = None
        customer_ref = (qb_invoice.get("CustomerRef") or {}).get("value")
        if customer_ref:
            customer = self.books.get_customer(customer_ref)
        customer = customer or {}

        lines = []
        for line in _sales_lines(qb_invoice):
            detail = line.get(SALES_LINE) or {}
            item_id = (detail.get("ItemRef") or {}).get("value")
            item = self.books.get_item(item_id) if item_id else None
            lines.append(QuickBooksLineView(
                item_id=item_id,
                item_name=(detail.get("ItemRef") or {}).get("name"),
                sku=(item or {}).get("Sku"),
                description=line.get("Description"),
                quantity=detail.get("Qty") or 1,
                unit_price=detail.get("UnitPrice") or line.get("Amount") or 0,
                amount=line.get("Amount") or 0,
            ))

        return QuickBooksInvoiceView(
            id=str(qb_invoice["Id"]),
            invoice_number=qb_invoice.get("DocNumber"),
            customer_name=(qb_invoice.get("CustomerRef") or {}).get("name"),
            customer_email=(
                (qb_invoice.get("BillEmail") or {}).get("Address")
                or (customer.get("PrimaryEmailAddr") or {}).get("Address")
            ),
            billing_address=_address_view(qb_invoice.get("BillAddr") or customer.get("BillAddr")),
            shipping_address=_address_view(qb_invoice.get("ShipAddr")),
            issue_date=qb_invoice.get("TxnDate"),
            due_date=qb_invoice.get("DueDate"),
            line_items=lines,
            subtotal=sum(line.amount for line in lines),
            tax_amount=(qb_invoice.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
            total=qb_invoice.get("TotalAmt") or 0,
            memo=(qb_invoice.get("CustomerMemo") or {}).get("value"),
        )

    def compare_invoice(self, invoice_id: str, qb_invoice_id: Optional[str] = None) -> InvoiceComparison:
        """Ledger invoice next to its QuickBooks counterpart, with match score."""
        details = self.get_invoice_details(invoice_id)
        qb_invoice = self._find_qb_invoice(details.invoice, qb_invoice_id)

        if not qb_invoice:
            return InvoiceComparison(atek=details)

        return InvoiceComparison(
            atek=details,
            qb=self._qb_invoice_view(qb_invoice),
            match_score=calculate_match_score(details.invoice, qb_invoice),
        )

    def get_sync_stats(self) -> SyncStats:
        invoices = self.ledger.list_invoices(limit=STATS_FETCH_LIMIT)
        statuses = {
            row["atek_invoice_id"]: row.get("validation_status")
            for row in self.store.find(self.validation.table)
        }

        stats = SyncStats(total=len(invoices))
        for invoice in invoices:
            status = statuses.get(invoice.id) or ValidationStatus.PENDING.value
            setattr(stats, status, getattr(stats, status) + 1)
        return stats

    # ===================
    # INLINE CREATION
    # ===================

    def get_missing_skus_for_invoice(self, invoice_id: str) -> list[MissingSku]:
        """SKUs on the invoice without an approved, linked mapping."""
        invoice = self._get_invoice(invoice_id)

        missing: dict[str, MissingSku] = {}
        for item in invoice.line_items:
            if item.sku_key in missing:
                continue
            mapping = self.sku_matching.find_mapping(item.sku_code, item.sku_id)
            if (
                mapping
                and mapping.get("mapping_status") == SkuMappingStatus.APPROVED.value
                and mapping.get("quickbooks_item_id")
            ):
                continue
            missing[item.sku_key] = MissingSku(
                sku_id=item.sku_id,
                sku_code=item.sku_key,
                sku_name=item.sku_name,
                description=item.description,
                unit_price=item.unit_price,
                taxable=item.taxable,
                mapping_status=mapping.get("mapping_status") if mapping else None,
            )

        return list(missing.values())

    def create_missing_skus_for_invoice(
        self,
        invoice_id: str,
        items: list[SkuCreateInput],
    ) -> SkuCreateBatchResult:
        """
        Create QuickBooks items for an invoice's unmapped SKUs and record
        approved mappings. The invoice is validated again afterwards.
        """
        invoice = self._get_invoice(invoice_id)
        sku_ids = {item.sku_key: item.sku_id for item in invoice.line_items}

        outcomes = []
        for item in items:
            data = {
                "Name": item.name,
                "Type": item.item_type.value,
                "Sku": item.sku_code,
                "Taxable": item.taxable,
            }
            if item.description:
                data["Description"] = item.description
            if item.unit_price is not None:
                data["UnitPrice"] = item.unit_price
            income_account = item.income_account_id or settings.quickbooks_income_account_id
            if income_account:
                data["IncomeAccountRef"] = {"value": income_account}

            try:
                created = self.books.create_item(data)
            except QuickBooksError as e:
                logger.warning("inline_item_create_failed", sku_code=item.sku_code, error=e.message)
                outcomes.append(SkuCreateOutcome(sku_code=item.sku_code, success=False, error=e.message))
                continue

            self.sku_matching.save_created_item(
                item.sku_id or sku_ids.get(item.sku_code, ""),
                item.sku_code,
                item.name,
                created,
            )
            outcomes.append(SkuCreateOutcome(
                sku_code=item.sku_code,
                success=True,
                quickbooks_item_id=str(created["Id"]),
            ))

        success_count = sum(1 for o in outcomes if o.success)
        if success_count:
            self.validation.validate_loaded_invoice(invoice)

        logger.info(
            "inline_items_created",
            invoice_id=invoice_id,
            success=success_count,
            failed=len(outcomes) - success_count
        )
        return SkuCreateBatchResult(
            success_count=success_count,
            fail_count=len(outcomes) - success_count,
            results=outcomes,
        )

    def create_customer_for_invoice(self, invoice_id: str, data: CustomerCreateInput) -> CustomerCreateResult:
        """
        Create a QuickBooks customer from the invoice's organization and
        record an approved manual mapping.

        Raises:
            InvoiceNotFoundError: Invoice not in the ledger
            OrganizationNotFoundError: Invoice organization not in the ledger
            QuickBooksError: Customer creation rejected
        """
        invoice = self._get_invoice(invoice_id)
        org = self.ledger.get_organization(invoice.organization_id) if invoice.organization_id else None
        if not org:
            raise OrganizationNotFoundError(invoice.organization_id)

        display_name = data.display_name or f"{pad_org_number(org.org_number)} {org.name}".strip()

        if data.line1 or data.city or data.postal_code:
            bill_addr = {
                "Line1": data.line1,
                "City": data.city,
                "PostalCode": data.postal_code,
            }
            bill_addr = {key: value for key, value in bill_addr.items() if value}
        else:
            bill_addr = parse_address_to_qb(invoice.billing_address)
        bill_addr.setdefault("CountrySubDivisionCode", data.province)
        bill_addr.setdefault("Country", data.country)

        payload = {
            "DisplayName": display_name,
            "CompanyName": data.company_name or org.name,
            "BillAddr": bill_addr,
        }
        if data.email:
            payload["PrimaryEmailAddr"] = {"Address": data.email}
        if data.phone:
            payload["PrimaryPhone"] = {"FreeFormNumber": data.phone}
        if data.notes:
            payload["Notes"] = data.notes

        customer = self.books.create_customer(payload)
        mapping = self.customer_matching.save_manual_mapping(org, customer, data.approved_by)
        self.validation.validate_loaded_invoice(invoice)

        return CustomerCreateResult(
            quickbooks_customer_id=str(customer["Id"]),
            display_name=customer.get("DisplayName") or display_name,
            mapping=mapping,
        )


# Singleton instance
_invoice_sync_service: Optional[InvoiceSyncService] = None


def get_invoice_sync_service() -> InvoiceSyncService:
    """Get or create InvoiceSyncService instance."""
    global _invoice_sync_service
    if _invoice_sync_service is None:
        _invoice_sync_service = InvoiceSyncService()
    return _invoice_sync_service
