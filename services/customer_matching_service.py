"""
Customer matching service.

Maps ATEK organizations to QuickBooks customers. QuickBooks display
names carry the ATEK org number:

    "0013 Acme"            primary customer for org 13
    "0013-08 Acme Dept"    sub-customer (never auto-matched)

Strategy: org-number match first, fuzzy name match only when no
org-number candidate exists. One mapping row per (organization,
contractual manager) pair seen on invoices; approved and rejected rows
are never touched by a run.
"""

import time
from typing import Optional
import structlog

from config import settings, CUSTOMER_MAPPING_TABLE
from exceptions import (
    MappingNotFoundError,
    OrganizationNotFoundError,
    QuickBooksCustomerNotFoundError,
)
from integrations.ledger import LedgerClient, get_ledger_client
from integrations.quickbooks import QuickBooksClient, get_quickbooks_client
from models.customer_mapping import (
    ConfidenceFactors,
    CustomerCandidate,
    CustomerMappingResponse,
    CustomerMappingStats,
    CustomerMappingStatus,
    CustomerMatchMethod,
    CustomerMatchingRunResult,
    CustomerMatchResult,
)
from models.ledger import LedgerManager, LedgerOrganization
from models.match_log import MatchEntityType, MatchLogCreate
from services.mapping_store import (
    MappingStore,
    get_mapping_store,
    is_human_decision,
    utc_now,
)
from services.match_log_service import MatchLogService
from utils.fuzzy_match import (
    combined_similarity,
    extract_name_from_display_name,
    extract_org_number,
    is_sub_customer,
    pad_org_number,
)

logger = structlog.get_logger(__name__)

# Scoring
ORG_NUMBER_BASE_SCORE = 0.90
NAME_BONUS_HIGH = 0.10      # name similarity > 0.80
NAME_BONUS_MEDIUM = 0.05    # name similarity > 0.50
FUZZY_MIN_SIMILARITY = 0.60
FUZZY_HIGH_SIMILARITY = 0.85
FUZZY_HIGH_WEIGHT = 0.70
FUZZY_LOW_WEIGHT = 0.50
MAX_LOGGED_CANDIDATES = 5

REVIEWABLE_STATUSES = (
    CustomerMappingStatus.PROPOSED.value,
    CustomerMappingStatus.NEEDS_REVIEW.value,
)


def score_org_number_candidate(org_name: str, qb_display_name: str) -> tuple[float, float]:
    """Return (score, name_similarity) for a same-org-number customer."""
    name_score = combined_similarity(org_name, extract_name_from_display_name(qb_display_name))

    score = ORG_NUMBER_BASE_SCORE
    if name_score > 0.8:
        score += NAME_BONUS_HIGH
    elif name_score > 0.5:
        score += NAME_BONUS_MEDIUM

    return min(score, 1.0), name_score


def score_fuzzy_candidate(name_score: float) -> float:
    weight = FUZZY_HIGH_WEIGHT if name_score > FUZZY_HIGH_SIMILARITY else FUZZY_LOW_WEIGHT
    return weight * name_score


def determine_mapping_status(has_customer: bool, confidence: float) -> CustomerMappingStatus:
    """Proposed when confident enough for bulk approval, otherwise needs review."""
    if not has_customer:
        return CustomerMappingStatus.NEEDS_REVIEW
    if confidence >= settings.match_proposed_threshold:
        return CustomerMappingStatus.PROPOSED
    return CustomerMappingStatus.NEEDS_REVIEW


def resolve_mapping(rows: list[dict], manager_id: Optional[str], any_manager: bool = False) -> Optional[dict]:
    """
    Pick one organization's mapping row: (org, manager), then (org, "").

    With any_manager, falls back further to any row for the org,
    approved rows preferred.
    """
    by_manager: dict[str, dict] = {}
    for row in rows:
        by_manager.setdefault(row.get("atek_contractual_manager_id") or "", row)

    if manager_id and manager_id in by_manager:
        return by_manager[manager_id]
    if "" in by_manager or not any_manager:
        return by_manager.get("")

    approved = [r for r in rows if r.get("mapping_status") == CustomerMappingStatus.APPROVED.value]
    return (approved or rows or [None])[0]


class CustomerMatchingService:
    """
    Customer matching business logic.

    Handles:
    - Batch matching of ledger organizations to QuickBooks customers
    - Review actions (approve, reject, manual mapping, repoint)
    - Mapping statistics
    """

    def __init__(
        self,
        store: Optional[MappingStore] = None,
        ledger: Optional[LedgerClient] = None,
        books: Optional[QuickBooksClient] = None,
        match_log: Optional[MatchLogService] = None,
    ):
        self.store = store or get_mapping_store()
        self._ledger = ledger
        self._books = books
        self.match_log = match_log or MatchLogService(self.store)
        self.table = CUSTOMER_MAPPING_TABLE

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

    def match_organization(
        self,
        org: LedgerOrganization,
        qb_customers: list[dict],
        by_org_number: Optional[dict[str, list[dict]]] = None,
    ) -> CustomerMatchResult:
        """
        Find the best QuickBooks customer for one organization.

        Args:
            org: Ledger organization
            qb_customers: All active QuickBooks customers
            by_org_number: Customers indexed by display-name org number
                (built from qb_customers when omitted)
        """
        if by_org_number is None:
            by_org_number = self._index_by_org_number(qb_customers)

        org_number = pad_org_number(org.org_number)
        candidates: list[tuple[dict, float, ConfidenceFactors]] = []

        # Strategy 1: org number
        if org_number:
            for customer in by_org_number.get(org_number, []):
                display_name = customer.get("DisplayName", "")
                if is_sub_customer(display_name):
                    continue
                score, name_score = score_org_number_candidate(org.name, display_name)
                candidates.append((customer, score, ConfidenceFactors(
                    org_num_match=True,
                    org_num_score=1.0,
                    name_score=name_score,
                )))

        # Strategy 2: fuzzy name, only without an org number candidate
        if not candidates:
            for customer in qb_customers:
                display_name = customer.get("DisplayName", "")
                if is_sub_customer(display_name):
                    continue
                name_score = combined_similarity(org.name, extract_name_from_display_name(display_name))
                if name_score <= FUZZY_MIN_SIMILARITY:
                    continue
                candidates.append((customer, score_fuzzy_candidate(name_score), ConfidenceFactors(
                    name_score=name_score,
                )))

        candidates.sort(key=lambda c: c[1], reverse=True)

        logged = [
            CustomerCandidate(
                qb_customer_id=str(customer["Id"]),
                qb_display_name=customer.get("DisplayName", ""),
                score=score,
            )
            for customer, score, _ in candidates[:MAX_LOGGED_CANDIDATES]
        ]

        if not candidates:
            return CustomerMatchResult(
                atek_organization_id=org.id,
                atek_organization_name=org.name,
                atek_org_number=org_number or None,
                confidence_score=0,
                matching_method=CustomerMatchMethod.NO_MATCH,
                mapping_status=CustomerMappingStatus.NEEDS_REVIEW,
            )

        best, score, factors = candidates[0]
        method = CustomerMatchMethod.ORG_NUMBER if factors.org_num_match else CustomerMatchMethod.FUZZY_NAME

        return CustomerMatchResult(
            atek_organization_id=org.id,
            atek_organization_name=org.name,
            atek_org_number=org_number or None,
            quickbooks_customer_id=str(best["Id"]),
            quickbooks_customer_name=best.get("DisplayName"),
            quickbooks_customer_email=(best.get("PrimaryEmailAddr") or {}).get("Address"),
            confidence_score=score,
            matching_method=method,
            confidence_factors=factors,
            candidates=logged,
            mapping_status=determine_mapping_status(True, score),
        )

    def _index_by_org_number(self, qb_customers: list[dict]) -> dict[str, list[dict]]:
        index: dict[str, list[dict]] = {}
        for customer in qb_customers:
            org_number = extract_org_number(customer.get("DisplayName"))
            if org_number:
                index.setdefault(org_number, []).append(customer)
        return index

    def run_matching(self) -> CustomerMatchingRunResult:
        """
        Match every active customer organization and persist mappings.

        Returns:
            Run summary with one result per organization
        """
        organizations = self.ledger.list_customer_organizations()
        qb_customers = self.books.list_customers(active_only=True)
        managers_by_org = self.ledger.get_managers_by_organization()
        by_org_number = self._index_by_org_number(qb_customers)

        logger.info(
            "customer_matching_started",
            organizations=len(organizations),
            qb_customers=len(qb_customers)
        )

        results: list[CustomerMatchResult] = []
        matched = unmatched = needs_review = total_mappings = 0

        for org in organizations:
            started = time.perf_counter()
            result = self.match_organization(org, qb_customers, by_org_number)
            results.append(result)

            managers: list[Optional[LedgerManager]] = list(managers_by_org.get(org.id, [])) or [None]

            for manager in managers:
                total_mappings += 1
                if result.quickbooks_customer_id:
                    matched += 1
                    if result.confidence_score < settings.match_proposed_threshold:
                        needs_review += 1
                else:
                    unmatched += 1
                self._store_mapping(result, manager)

            # One audit row per organization, however many managers
            self._log_match(result, started)

        logger.info(
            "customer_matching_complete",
            organizations=len(organizations),
            mappings=total_mappings,
            matched=matched,
            unmatched=unmatched,
            needs_review=needs_review
        )

        return CustomerMatchingRunResult(
            total_organizations=len(organizations),
            total_mappings=total_mappings,
            matched=matched,
            unmatched=unmatched,
            needs_review=needs_review,
            results=results,
        )

    def _store_mapping(self, result: CustomerMatchResult, manager: Optional[LedgerManager]) -> None:
        key = {
            "atek_organization_id": result.atek_organization_id,
            "atek_contractual_manager_id": manager.id if manager else "",
        }
        data = {
            "atek_organization_name": result.atek_organization_name,
            "atek_manager_name": manager.name if manager else None,
            "atek_manager_email": manager.email if manager else None,
            "quickbooks_customer_id": result.quickbooks_customer_id,
            "quickbooks_customer_name": result.quickbooks_customer_name,
            "quickbooks_customer_email": result.quickbooks_customer_email,
            "mapping_status": result.mapping_status.value,
            "confidence_score": result.confidence_score,
            "confidence_factors": result.confidence_factors.model_dump(),
            "matching_method": result.matching_method.value,
            "requires_manual_review": result.confidence_score < settings.match_proposed_threshold,
        }
        self.store.upsert(self.table, key, data, preserve_if=is_human_decision)

    def _log_match(self, result: CustomerMatchResult, started: float) -> None:
        self.match_log.record(MatchLogCreate(
            entity_type=MatchEntityType.CUSTOMER,
            atek_entity_id=result.atek_organization_id,
            total_candidates=len(result.candidates),
            best_match_id=result.quickbooks_customer_id,
            best_match_score=result.confidence_score,
            all_candidates=[c.model_dump() for c in result.candidates],
            matching_criteria_used={
                "strategy": result.matching_method.value,
                "org_number": result.atek_org_number,
                "factors": result.confidence_factors.model_dump(),
            },
            execution_time_ms=int((time.perf_counter() - started) * 1000),
        ))

    # ===================
    # QUERIES
    # ===================

    def get_mapping(self, mapping_id: int) -> CustomerMappingResponse:
        row = self.store.find_one(self.table, {"mapping_id": mapping_id})
        if not row:
            raise MappingNotFoundError(mapping_id)
        return CustomerMappingResponse(**row)

    def get_customer_mappings(
        self,
        status: Optional[CustomerMappingStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CustomerMappingResponse]:
        """
        List mappings, highest confidence first.

        Manager name/email missing on older rows is filled from the ledger.
        """
        filters = {"mapping_status": status.value} if status else None
        rows = self.store.find(
            self.table,
            filters=filters,
            order_by="confidence_score",
            desc=True,
            limit=limit,
            offset=offset,
        )

        missing = {
            row["atek_contractual_manager_id"]
            for row in rows
            if row.get("atek_contractual_manager_id") and not row.get("atek_manager_name")
        }
        if missing:
            managers = {m.id: m for m in self.ledger.get_managers(missing)}
            for row in rows:
                manager = managers.get(row.get("atek_contractual_manager_id"))
                if manager and not row.get("atek_manager_name"):
                    row["atek_manager_name"] = manager.name
                    row["atek_manager_email"] = manager.email

        return [CustomerMappingResponse(**row) for row in rows]

    def find_mapping_for_invoice(
        self,
        organization_id: str,
        manager_id: Optional[str],
        any_manager: bool = False,
    ) -> Optional[dict]:
        """Mapping row for an invoice's organization and manager (see resolve_mapping)."""
        rows = self.store.find(self.table, filters={"atek_organization_id": organization_id})
        return resolve_mapping(rows, manager_id, any_manager)

    def get_mapping_stats(self) -> CustomerMappingStats:
        rows = self.store.find(self.table)
        if not rows:
            return CustomerMappingStats()

        by_status: dict[str, int] = {}
        for row in rows:
            by_status[row.get("mapping_status")] = by_status.get(row.get("mapping_status"), 0) + 1

        scores = [float(row.get("confidence_score") or 0) for row in rows]

        return CustomerMappingStats(
            total=len(rows),
            proposed=by_status.get("proposed", 0),
            approved=by_status.get("approved", 0),
            rejected=by_status.get("rejected", 0),
            needs_review=by_status.get("needs_review", 0),
            avg_confidence=round(sum(scores) / len(scores), 4),
            high_confidence=sum(1 for s in scores if s >= settings.match_high_confidence_threshold),
            low_confidence=sum(1 for s in scores if s < settings.match_proposed_threshold),
        )

    # ===================
    # REVIEW ACTIONS
    # ===================

    def approve_mapping(self, mapping_id: int, approved_by: str) -> CustomerMappingResponse:
        self.get_mapping(mapping_id)
        rows = self.store.update(self.table, {"mapping_id": mapping_id}, {
            "mapping_status": CustomerMappingStatus.APPROVED.value,
            "approved_by": approved_by,
            "approved_date": utc_now(),
            "requires_manual_review": False,
        })
        logger.info("customer_mapping_approved", mapping_id=mapping_id, approved_by=approved_by)
        return CustomerMappingResponse(**rows[0])

    def bulk_approve(self, mapping_ids: list[int], approved_by: str) -> int:
        """Approve several mappings. Returns how many were approved."""
        approved = 0
        for mapping_id in mapping_ids:
            try:
                self.approve_mapping(mapping_id, approved_by)
                approved += 1
            except MappingNotFoundError:
                logger.warning("bulk_approve_mapping_missing", mapping_id=mapping_id)
        return approved

    def reject_mapping(self, mapping_id: int, notes: Optional[str] = None) -> CustomerMappingResponse:
        self.get_mapping(mapping_id)
        rows = self.store.update(self.table, {"mapping_id": mapping_id}, {
            "mapping_status": CustomerMappingStatus.REJECTED.value,
            "review_notes": notes,
        })
        logger.info("customer_mapping_rejected", mapping_id=mapping_id)
        return CustomerMappingResponse(**rows[0])

    def create_manual_mapping(
        self,
        organization_id: str,
        qb_customer_id: str,
        approved_by: str,
    ) -> CustomerMappingResponse:
        """
        Link an organization to a customer chosen by a reviewer.

        Raises:
            OrganizationNotFoundError: Unknown ledger organization
            QuickBooksCustomerNotFoundError: Unknown QuickBooks customer
        """
        org = self.ledger.get_organization(organization_id)
        if not org:
            raise OrganizationNotFoundError(organization_id)

        customer = self.books.get_customer(qb_customer_id)
        if not customer:
            raise QuickBooksCustomerNotFoundError(qb_customer_id)

        return self.save_manual_mapping(org, customer, approved_by)

    def save_manual_mapping(self, org: LedgerOrganization, customer: dict, approved_by: str) -> CustomerMappingResponse:
        """Persist an approved manual mapping (org, no manager) → customer."""
        key = {"atek_organization_id": org.id, "atek_contractual_manager_id": ""}
        row, action = self.store.upsert(self.table, key, {
            "atek_organization_name": org.name,
            "quickbooks_customer_id": str(customer["Id"]),
            "quickbooks_customer_name": customer.get("DisplayName"),
            "quickbooks_customer_email": (customer.get("PrimaryEmailAddr") or {}).get("Address"),
            "mapping_status": CustomerMappingStatus.APPROVED.value,
            "confidence_score": 1.0,
            "matching_method": CustomerMatchMethod.MANUAL.value,
            "requires_manual_review": False,
            "approved_by": approved_by,
            "approved_date": utc_now(),
        })
        logger.info(
            "customer_mapping_manual",
            organization_id=org.id,
            qb_customer_id=customer["Id"],
            action=action.value
        )
        return CustomerMappingResponse(**row)

    def update_mapping_qb_customer(
        self,
        mapping_id: int,
        qb_customer_id: str,
        qb_customer_name: str,
    ) -> CustomerMappingResponse:
        """Repoint a mapping to another customer (manual, confidence 1.0)."""
        self.get_mapping(mapping_id)
        rows = self.store.update(self.table, {"mapping_id": mapping_id}, {
            "quickbooks_customer_id": qb_customer_id,
            "quickbooks_customer_name": qb_customer_name,
            "confidence_score": 1.0,
            "matching_method": CustomerMatchMethod.MANUAL.value,
            "requires_manual_review": False,
        })
        logger.info("customer_mapping_repointed", mapping_id=mapping_id, qb_customer_id=qb_customer_id)
        return CustomerMappingResponse(**rows[0])

    def clear_all_mappings(self) -> int:
        """Delete proposed/needs_review rows and the customer audit trail."""
        deleted = self.store.delete(self.table, in_filters={"mapping_status": REVIEWABLE_STATUSES})
        self.match_log.clear(MatchEntityType.CUSTOMER)
        logger.info("customer_mappings_cleared", deleted=deleted)
        return deleted

    def force_delete_all_mappings(self) -> int:
        """Delete every mapping, approved and rejected included."""
        deleted = self.store.delete(self.table, in_filters={
            "mapping_status": [s.value for s in CustomerMappingStatus]
        })
        self.match_log.clear(MatchEntityType.CUSTOMER)
        logger.warning("customer_mappings_force_deleted", deleted=deleted)
        return deleted


# Singleton instance
_customer_matching_service: Optional[CustomerMatchingService] = None


def get_customer_matching_service() -> CustomerMatchingService:
    """Get or create CustomerMatchingService instance."""
    global _customer_matching_service
    if _customer_matching_service is None:
        _customer_matching_service = CustomerMatchingService()
    return _customer_matching_service
