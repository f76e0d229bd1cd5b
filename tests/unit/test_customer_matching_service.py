"""
Unit tests for CustomerMatchingService.

Run: pytest tests/unit/test_customer_matching_service.py -v
"""

import pytest

from config import CUSTOMER_MAPPING_TABLE, MATCH_LOG_TABLE
from exceptions import (
    MappingNotFoundError,
    OrganizationNotFoundError,
    QuickBooksCustomerNotFoundError,
)
from models.customer_mapping import CustomerMappingStatus, CustomerMatchMethod
from services.customer_matching_service import (
    CustomerMatchingService,
    determine_mapping_status,
    resolve_mapping,
    score_fuzzy_candidate,
    score_org_number_candidate,
)
from tests.factories import (
    ManagerFactory,
    MappingRowFactory,
    OrganizationFactory,
    QuickBooksFactory,
)


@pytest.fixture
def service(store, fake_ledger, mock_books) -> CustomerMatchingService:
    return CustomerMatchingService(store, ledger=fake_ledger, books=mock_books)


class TestScoring:
    """Tests for the scoring helpers"""

    def test_org_number_with_matching_name(self):
        """Should add the high name bonus on top of the org-number base."""
        score, name_score = score_org_number_candidate("Acme Construction", "0013 Acme Construction")

        assert name_score == pytest.approx(1.0)
        assert score == pytest.approx(1.0)

    def test_org_number_with_unrelated_name(self):
        """Should keep the 0.90 base when names differ."""
        score, _ = score_org_number_candidate("Acme Construction", "0013 Zebra Holdings")

        assert score == pytest.approx(0.90)

    def test_fuzzy_weights(self):
        assert score_fuzzy_candidate(0.9) == pytest.approx(0.63)
        assert score_fuzzy_candidate(0.8) == pytest.approx(0.40)

    def test_determine_mapping_status(self):
        assert determine_mapping_status(True, 0.70) == CustomerMappingStatus.PROPOSED
        assert determine_mapping_status(True, 0.69) == CustomerMappingStatus.NEEDS_REVIEW
        assert determine_mapping_status(False, 0) == CustomerMappingStatus.NEEDS_REVIEW


class TestMatchOrganization:
    """Tests for CustomerMatchingService.match_organization()"""

    def test_org_number_match(self, service):
        """Should pick the customer whose display name carries the org number."""
        org = OrganizationFactory.create(name="Acme Construction", org_number=13)
        customers = [
            QuickBooksFactory.customer("qb-1", "0013 Acme Construction", email="ap@acme.test"),
            QuickBooksFactory.customer("qb-2", "0014 Other Co"),
        ]

        result = service.match_organization(org, customers)

        assert result.quickbooks_customer_id == "qb-1"
        assert result.quickbooks_customer_email == "ap@acme.test"
        assert result.matching_method == CustomerMatchMethod.ORG_NUMBER
        assert result.confidence_score == pytest.approx(1.0)
        assert result.mapping_status == CustomerMappingStatus.PROPOSED
        assert result.confidence_factors.org_num_match is True
        assert result.atek_org_number == "0013"

    def test_sub_customers_never_selected(self, service):
        """Should skip NNNN-NN sub-customers even with the same org number."""
        org = OrganizationFactory.create(name="Acme Construction", org_number=13)
        customers = [QuickBooksFactory.customer("qb-sub", "0013-08 Acme Construction")]

        result = service.match_organization(org, customers)

        assert result.quickbooks_customer_id is None
        assert result.matching_method == CustomerMatchMethod.NO_MATCH

    def test_fuzzy_fallback_when_no_org_number_candidate(self, service):
        """Should fall back to fuzzy names and mark weak matches for review."""
        org = OrganizationFactory.create(name="Acme Construction", org_number=77)
        customers = [QuickBooksFactory.customer("qb-9", "0099 Acme Construction Inc")]

        result = service.match_organization(org, customers)

        assert result.quickbooks_customer_id == "qb-9"
        assert result.matching_method == CustomerMatchMethod.FUZZY_NAME
        assert result.confidence_score < 0.70
        assert result.mapping_status == CustomerMappingStatus.NEEDS_REVIEW

    def test_fuzzy_strong_match_is_proposed(self, service):
        org = OrganizationFactory.create(name="Acme Construction", org_number=None)
        customers = [QuickBooksFactory.customer("qb-9", "Acme Construction")]

        result = service.match_organization(org, customers)

        assert result.matching_method == CustomerMatchMethod.FUZZY_NAME
        assert result.confidence_score == pytest.approx(0.70)
        assert result.mapping_status == CustomerMappingStatus.PROPOSED

    def test_no_candidate(self, service):
        org = OrganizationFactory.create(name="Acme Construction", org_number=None)
        customers = [QuickBooksFactory.customer("qb-9", "Zebra Holdings")]

        result = service.match_organization(org, customers)

        assert result.quickbooks_customer_id is None
        assert result.confidence_score == 0
        assert result.mapping_status == CustomerMappingStatus.NEEDS_REVIEW

    def test_candidates_sorted_by_score(self, service):
        org = OrganizationFactory.create(name="Acme Construction", org_number=13)
        customers = [
            QuickBooksFactory.customer("qb-low", "0013 Zebra Holdings"),
            QuickBooksFactory.customer("qb-high", "0013 Acme Construction"),
        ]

        result = service.match_organization(org, customers)

        assert result.quickbooks_customer_id == "qb-high"
        assert [c.qb_customer_id for c in result.candidates] == ["qb-high", "qb-low"]


class TestRunMatching:
    """Tests for CustomerMatchingService.run_matching()"""

    def test_one_mapping_per_manager(self, service, fake_ledger, mock_books, store):
        """Should store one row per (organization, manager) and one audit row per organization."""
        fake_ledger.add_organization(OrganizationFactory.create("org-1", "Acme Construction", 13))
        fake_ledger.add_manager("org-1", ManagerFactory.create("mgr-1", "Marie Tremblay"))
        fake_ledger.add_manager("org-1", ManagerFactory.create("mgr-2", "Luc Roy"))
        mock_books.list_customers.return_value = [QuickBooksFactory.customer("qb-1", "0013 Acme Construction")]

        result = service.run_matching()

        assert result.total_organizations == 1
        assert result.total_mappings == 2
        assert result.matched == 2
        rows = store.find(CUSTOMER_MAPPING_TABLE)
        assert {r["atek_contractual_manager_id"] for r in rows} == {"mgr-1", "mgr-2"}
        assert all(r["quickbooks_customer_id"] == "qb-1" for r in rows)
        assert rows[0]["confidence_factors"]["org_num_match"] is True
        assert len(store.find(MATCH_LOG_TABLE)) == 1

    def test_organization_without_managers_gets_blank_manager_row(self, service, fake_ledger, mock_books, store):
        fake_ledger.add_organization(OrganizationFactory.create("org-1", "Acme Construction", 13))

        result = service.run_matching()

        assert result.total_mappings == 1
        assert result.unmatched == 1
        row = store.find_one(CUSTOMER_MAPPING_TABLE, {"atek_organization_id": "org-1"})
        assert row["atek_contractual_manager_id"] == ""
        assert row["mapping_status"] == "needs_review"

    def test_human_decisions_preserved(self, service, fake_ledger, mock_books, store):
        """Should never overwrite approved or rejected rows."""
        fake_ledger.add_organization(OrganizationFactory.create("org-1", "Acme Construction", 13))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(
            "org-1", qb_customer_id="qb-chosen", status="approved", qb_customer_name="Chosen by reviewer"
        ))
        mock_books.list_customers.return_value = [QuickBooksFactory.customer("qb-1", "0013 Acme Construction")]

        service.run_matching()

        row = store.find_one(CUSTOMER_MAPPING_TABLE, {"atek_organization_id": "org-1"})
        assert row["quickbooks_customer_id"] == "qb-chosen"
        assert row["mapping_status"] == "approved"

    def test_rerun_updates_proposals(self, service, fake_ledger, mock_books, store):
        fake_ledger.add_organization(OrganizationFactory.create("org-1", "Acme Construction", 13))
        service.run_matching()

        mock_books.list_customers.return_value = [QuickBooksFactory.customer("qb-1", "0013 Acme Construction")]
        service.run_matching()

        rows = store.find(CUSTOMER_MAPPING_TABLE)
        assert len(rows) == 1
        assert rows[0]["quickbooks_customer_id"] == "qb-1"
        assert rows[0]["mapping_status"] == "proposed"


class TestFindMappingForInvoice:
    """Tests for CustomerMatchingService.find_mapping_for_invoice()"""

    def test_prefers_manager_specific_row(self, service, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", "", qb_customer_id="qb-org"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", "mgr-1", qb_customer_id="qb-mgr"))

        row = service.find_mapping_for_invoice("org-1", "mgr-1")

        assert row["quickbooks_customer_id"] == "qb-mgr"

    def test_falls_back_to_organization_row(self, service, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", "", qb_customer_id="qb-org"))

        row = service.find_mapping_for_invoice("org-1", "mgr-unknown")

        assert row["quickbooks_customer_id"] == "qb-org"

    def test_other_manager_row_needs_any_manager(self, service, store):
        """Should only use another manager's row when asked to."""
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", "mgr-2", qb_customer_id="qb-2"))

        assert service.find_mapping_for_invoice("org-1", "mgr-1") is None
        assert service.find_mapping_for_invoice("org-1", "mgr-1", any_manager=True)["quickbooks_customer_id"] == "qb-2"


class TestResolveMapping:
    """Tests for resolve_mapping()"""

    def test_manager_row_wins_over_org_row(self):
        rows = [
            MappingRowFactory.customer(manager_id="", qb_customer_id="qb-org"),
            MappingRowFactory.customer(manager_id="mgr-1", qb_customer_id="qb-mgr"),
        ]

        assert resolve_mapping(rows, "mgr-1")["quickbooks_customer_id"] == "qb-mgr"
        assert resolve_mapping(rows, None)["quickbooks_customer_id"] == "qb-org"

    def test_any_manager_prefers_approved(self):
        rows = [
            MappingRowFactory.customer(manager_id="mgr-2", qb_customer_id="qb-2", status="needs_review"),
            MappingRowFactory.customer(manager_id="mgr-3", qb_customer_id="qb-3"),
        ]

        assert resolve_mapping(rows, "mgr-1") is None
        assert resolve_mapping(rows, "mgr-1", any_manager=True)["quickbooks_customer_id"] == "qb-3"

    def test_no_rows(self):
        assert resolve_mapping([], "mgr-1", any_manager=True) is None


class TestReviewActions:
    """Tests for approve / reject / manual mapping"""

    def test_approve_mapping(self, service, store):
        row = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(status="proposed"))

        result = service.approve_mapping(row["mapping_id"], "reviewer@example.com")

        assert result.mapping_status == CustomerMappingStatus.APPROVED
        assert result.approved_by == "reviewer@example.com"
        assert result.approved_date is not None

    def test_approve_missing_mapping(self, service):
        with pytest.raises(MappingNotFoundError):
            service.approve_mapping(999, "reviewer")

    def test_bulk_approve_skips_missing(self, service, store):
        first = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", status="proposed"))
        second = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-2", status="proposed"))

        approved = service.bulk_approve([first["mapping_id"], 999, second["mapping_id"]], "reviewer")

        assert approved == 2

    def test_reject_mapping(self, service, store):
        row = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(status="proposed"))

        result = service.reject_mapping(row["mapping_id"], "Wrong company")

        assert result.mapping_status == CustomerMappingStatus.REJECTED
        assert result.review_notes == "Wrong company"

    def test_create_manual_mapping(self, service, fake_ledger, mock_books):
        fake_ledger.add_organization(OrganizationFactory.create("org-1"))
        mock_books.get_customer.return_value = QuickBooksFactory.customer("qb-7", "0013 Acme Construction")

        result = service.create_manual_mapping("org-1", "qb-7", "reviewer")

        assert result.quickbooks_customer_id == "qb-7"
        assert result.mapping_status == CustomerMappingStatus.APPROVED
        assert result.matching_method == "manual"
        assert result.confidence_score == 1.0

    def test_create_manual_mapping_unknown_org(self, service):
        with pytest.raises(OrganizationNotFoundError):
            service.create_manual_mapping("nope", "qb-7", "reviewer")

    def test_create_manual_mapping_unknown_customer(self, service, fake_ledger):
        fake_ledger.add_organization(OrganizationFactory.create("org-1"))

        with pytest.raises(QuickBooksCustomerNotFoundError):
            service.create_manual_mapping("org-1", "qb-missing", "reviewer")

    def test_update_mapping_qb_customer(self, service, store):
        row = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(status="needs_review", confidence=0.4))

        result = service.update_mapping_qb_customer(row["mapping_id"], "qb-5", "0013 Acme")

        assert result.quickbooks_customer_id == "qb-5"
        assert result.confidence_score == 1.0
        assert result.matching_method == "manual"


class TestStatsAndClear:
    def test_get_mapping_stats(self, service, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", status="approved", confidence=1.0))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-2", status="proposed", confidence=0.8))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-3", status="needs_review", confidence=0.3))

        stats = service.get_mapping_stats()

        assert stats.total == 3
        assert stats.approved == 1
        assert stats.proposed == 1
        assert stats.needs_review == 1
        assert stats.high_confidence == 1
        assert stats.low_confidence == 1
        assert stats.avg_confidence == pytest.approx(0.7)

    def test_empty_stats(self, service):
        assert service.get_mapping_stats().total == 0

    def test_clear_keeps_human_decisions(self, service, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", status="approved"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-2", status="proposed"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-3", status="needs_review"))

        deleted = service.clear_all_mappings()

        assert deleted == 2
        assert [r["atek_organization_id"] for r in store.find(CUSTOMER_MAPPING_TABLE)] == ["org-1"]

    def test_force_delete_removes_everything(self, service, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", status="approved"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-2", status="rejected"))

        assert service.force_delete_all_mappings() == 2
        assert store.find(CUSTOMER_MAPPING_TABLE) == []
