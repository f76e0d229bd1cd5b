"""
SKU matching service.

Classifies the SKUs used on sync-eligible ledger invoices against the
active QuickBooks item catalog:

    exact_code   normalized SKU code equals item Sku      1.00
    exact_name   normalized name equals item Name         0.95
    fuzzy_name   best name similarity >= 0.80             similarity * 0.90
    no_match                                              0

Matcher output is a suggestion only. approve_match / approve_all_matches
persist it as an approved SkuMapping.
"""

from typing import Optional
import structlog

from config import settings, SKU_MAPPING_TABLE
from exceptions import QuickBooksError
from integrations.ledger import LedgerClient, get_ledger_client
from integrations.quickbooks import QuickBooksClient, get_quickbooks_client
from models.ledger import InvoiceSku
from models.sku_mapping import (
    SkuApproveAllResult,
    SkuMappingMethod,
    SkuMappingResponse,
    SkuMappingStatus,
    SkuMatchApproval,
    SkuMatchResult,
    SkuMatchStats,
    SkuMatchType,
)
from services.mapping_store import MappingStore, get_mapping_store, utc_now
from utils.fuzzy_match import normalize, string_similarity

logger = structlog.get_logger(__name__)

EXACT_CODE_CONFIDENCE = 1.0
EXACT_NAME_CONFIDENCE = 0.95
FUZZY_CONFIDENCE_FACTOR = 0.9

# QuickBooks French UI renames deleted items instead of always deactivating them
SOFT_DELETE_MARKERS = ("(supprimé)", "(deleted)")


def is_eligible_item(item: dict) -> bool:
    """Active, and not carrying a soft-delete marker in its name."""
    if item.get("Active") is not True:
        return False
    name = item.get("Name") or ""
    return not any(marker in name for marker in SOFT_DELETE_MARKERS)


def to_mapping_method(match_type: SkuMatchType) -> SkuMappingMethod:
    if match_type == SkuMatchType.EXACT_CODE:
        return SkuMappingMethod.CODE_EXACT
    if match_type in (SkuMatchType.EXACT_NAME, SkuMatchType.FUZZY_NAME):
        return SkuMappingMethod.NAME_FUZZY
    return SkuMappingMethod.MANUAL


class SkuMatchingService:
    """SKU matching and approval."""

    def __init__(
        self,
        store: Optional[MappingStore] = None,
        ledger: Optional[LedgerClient] = None,
        books: Optional[QuickBooksClient] = None,
    ):
        self.store = store or get_mapping_store()
        self._ledger = ledger
        self._books = books
        self.table = SKU_MAPPING_TABLE

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

    # ===================
    # MATCHING
    # ===================

    def _unmatched(self, sku: InvoiceSku) -> SkuMatchResult:
        return SkuMatchResult(
            atek_sku_id=sku.sku_id,
            atek_sku_code=sku.code,
            atek_sku_name=sku.name,
            atek_description=sku.description,
            atek_unit_price=sku.unit_price,
            invoice_count=sku.invoice_count,
        )

    def classify(self, sku: InvoiceSku, items: list[dict]) -> SkuMatchResult:
        """Match one SKU against an already filtered item list."""
        return self.classify_all([sku], items)[0]

    def classify_all(self, skus: list[InvoiceSku], items: list[dict]) -> list[SkuMatchResult]:
        eligible = [item for item in items if is_eligible_item(item)]

        by_code: dict[str, dict] = {}
        by_name: dict[str, dict] = {}
        for item in eligible:
            if item.get("Sku"):
                by_code[normalize(item["Sku"])] = item
            by_name[normalize(item.get("Name"))] = item

        results = []
        for sku in skus:
            result = self._unmatched(sku)
            match: Optional[dict] = None

            if sku.code:
                match = by_code.get(normalize(sku.code))
                if match:
                    result.match_type = SkuMatchType.EXACT_CODE
                    result.confidence_score = EXACT_CODE_CONFIDENCE

            if not match and sku.name:
                match = by_name.get(normalize(sku.name))
                if match:
                    result.match_type = SkuMatchType.EXACT_NAME
                    result.confidence_score = EXACT_NAME_CONFIDENCE

            if not match and sku.name:
                best_score = 0.0
                for item in eligible:
                    similarity = string_similarity(sku.name, item.get("Name"))
                    if similarity > best_score and similarity >= settings.sku_fuzzy_threshold:
                        best_score = similarity
                        match = item
                if match:
                    result.match_type = SkuMatchType.FUZZY_NAME
                    result.confidence_score = best_score * FUZZY_CONFIDENCE_FACTOR

            if match:
                result.quickbooks_item_id = str(match["Id"])
                result.quickbooks_item_name = match.get("Name")
                result.quickbooks_item_type = match.get("Type")

            results.append(result)

        return results

    def match_invoice_skus_with_qb_items(self) -> list[SkuMatchResult]:
        """
        Classify every SKU used on sync-eligible invoices.

        QuickBooks unreachable or not connected: every SKU comes back
        as no_match instead of failing.
        """
        skus = self.ledger.get_unique_skus()

        if not self.books.is_configured:
            logger.warning("sku_matching_quickbooks_not_connected", skus=len(skus))
            return [self._unmatched(sku) for sku in skus]

        try:
            items = self.books.list_items(active_only=True)
        except QuickBooksError as e:
            logger.error("sku_matching_item_fetch_failed", error=str(e))
            return [self._unmatched(sku) for sku in skus]

        results = self.classify_all(skus, items)

        logger.info(
            "sku_matching_complete",
            skus=len(skus),
            items=len(items),
            matched=sum(1 for r in results if r.match_type != SkuMatchType.NO_MATCH)
        )
        return results

    def get_sku_match_stats(self) -> SkuMatchStats:
        results = self.match_invoice_skus_with_qb_items()

        by_match_type = {match_type.value: 0 for match_type in SkuMatchType}
        for result in results:
            by_match_type[result.match_type.value] += 1

        matched = sum(1 for r in results if r.quickbooks_item_id)
        return SkuMatchStats(
            total=len(results),
            matched=matched,
            unmatched=len(results) - matched,
            by_match_type=by_match_type,
        )

    # ===================
    # MAPPINGS
    # ===================

    def find_mapping(self, sku_code: Optional[str], sku_id: Optional[str]) -> Optional[dict]:
        """Mapping row by SKU code, falling back to SKU id."""
        if sku_code:
            row = self.store.find_one(self.table, {"atek_sku_code": sku_code})
            if row:
                return row
        if sku_id:
            return self.store.find_one(self.table, {"atek_sku_id": sku_id})
        return None

    def get_income_accounts(self) -> list[dict]:
        """Income accounts offered when creating an item. Empty when not connected."""
        if not self.books.is_configured:
            return []
        return self.books.get_income_accounts()

    def get_sku_mappings(self, status: Optional[SkuMappingStatus] = None) -> list[SkuMappingResponse]:
        filters = {"mapping_status": status.value} if status else None
        rows = self.store.find(self.table, filters=filters, order_by="atek_sku_code")
        return [SkuMappingResponse(**row) for row in rows]

    def approve_match(self, approval: SkuMatchApproval) -> SkuMappingResponse:
        """Persist one suggestion as an approved mapping (upsert by code)."""
        row, action = self.store.upsert(
            self.table,
            {"atek_sku_code": approval.atek_sku_code},
            {
                "atek_sku_id": approval.atek_sku_id or approval.atek_sku_code,
                "atek_sku_name": approval.atek_sku_name,
                "quickbooks_item_id": approval.quickbooks_item_id,
                "quickbooks_item_name": approval.quickbooks_item_name,
                "quickbooks_item_type": approval.quickbooks_item_type,
                "mapping_status": SkuMappingStatus.APPROVED.value,
                "confidence_score": approval.confidence_score,
                "matching_method": to_mapping_method(approval.match_type).value,
                "requires_qb_creation": False,
                "approved_by": approval.approved_by,
                "approved_date": utc_now(),
            },
        )
        logger.info(
            "sku_mapping_approved",
            sku_code=approval.atek_sku_code,
            qb_item_id=approval.quickbooks_item_id,
            action=action.value
        )
        return SkuMappingResponse(**row)

    def approve_all_matches(self, approved_by: Optional[str] = None) -> SkuApproveAllResult:
        """
        Approve every matcher suggestion.

        Skips no_match results and SKUs already approved with the same item.
        """
        matches = self.match_invoice_skus_with_qb_items()
        approved = skipped = 0

        for match in matches:
            if match.match_type == SkuMatchType.NO_MATCH or not match.quickbooks_item_id:
                skipped += 1
                continue

            existing = self.store.find_one(self.table, {"atek_sku_code": match.atek_sku_code})
            if (
                existing
                and existing.get("mapping_status") == SkuMappingStatus.APPROVED.value
                and existing.get("quickbooks_item_id") == match.quickbooks_item_id
            ):
                skipped += 1
                continue

            self.approve_match(SkuMatchApproval(
                atek_sku_id=match.atek_sku_id or match.atek_sku_code,
                atek_sku_code=match.atek_sku_code,
                atek_sku_name=match.atek_sku_name,
                quickbooks_item_id=match.quickbooks_item_id,
                quickbooks_item_name=match.quickbooks_item_name or "",
                quickbooks_item_type=match.quickbooks_item_type,
                match_type=match.match_type,
                confidence_score=match.confidence_score,
                approved_by=approved_by,
            ))
            approved += 1

        logger.info("sku_mappings_bulk_approved", approved=approved, skipped=skipped)
        return SkuApproveAllResult(
            approved_count=approved,
            skipped_count=skipped,
            total_processed=len(matches),
        )

    def save_created_item(self, sku_id: str, sku_code: str, sku_name: Optional[str], item: dict) -> SkuMappingResponse:
        """Record an approved mapping for an item created inline."""
        row, _ = self.store.upsert(
            self.table,
            {"atek_sku_code": sku_code},
            {
                "atek_sku_id": sku_id or sku_code,
                "atek_sku_name": sku_name,
                "quickbooks_item_id": str(item["Id"]),
                "quickbooks_item_name": item.get("Name"),
                "quickbooks_item_type": item.get("Type"),
                "mapping_status": SkuMappingStatus.APPROVED.value,
                "confidence_score": 1.0,
                "matching_method": SkuMappingMethod.CREATED.value,
                "requires_qb_creation": False,
                "approved_date": utc_now(),
            },
        )
        return SkuMappingResponse(**row)


# Singleton instance
_sku_matching_service: Optional[SkuMatchingService] = None


def get_sku_matching_service() -> SkuMatchingService:
    """Get or create SkuMatchingService instance."""
    global _sku_matching_service
    if _sku_matching_service is None:
        _sku_matching_service = SkuMatchingService()
    return _sku_matching_service
