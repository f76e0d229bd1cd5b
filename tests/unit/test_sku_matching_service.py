"""
Unit tests for SkuMatchingService.

Run: pytest tests/unit/test_sku_matching_service.py -v
"""

import pytest

from config import SKU_MAPPING_TABLE
from exceptions import TransientQuickBooksError
from models.sku_mapping import SkuMappingStatus, SkuMatchApproval, SkuMatchType
from services.sku_matching_service import SkuMatchingService, is_eligible_item
from tests.factories import InvoiceSkuFactory, MappingRowFactory, QuickBooksFactory


@pytest.fixture
def service(store, fake_ledger, mock_books) -> SkuMatchingService:
    return SkuMatchingService(store, ledger=fake_ledger, books=mock_books)


class TestIsEligibleItem:
    """Tests for is_eligible_item()"""

    def test_active_item(self):
        assert is_eligible_item(QuickBooksFactory.item("1", "Porcelain Tile")) is True

    def test_inactive_item(self):
        assert is_eligible_item(QuickBooksFactory.item("1", "Porcelain Tile", active=False)) is False

    def test_soft_deleted_names(self):
        """Should skip items renamed as deleted, in French or English."""
        assert is_eligible_item(QuickBooksFactory.item("1", "Porcelain Tile (supprimé)")) is False
        assert is_eligible_item(QuickBooksFactory.item("2", "Porcelain Tile (deleted)")) is False


class TestClassify:
    """Tests for SkuMatchingService.classify()"""

    def test_exact_code_match(self, service):
        """Should match on normalized code with confidence 1.0."""
        sku = InvoiceSkuFactory.create("tile-001", name="Something else")
        items = [QuickBooksFactory.item("item-1", "Porcelain Tile", sku="TILE-001")]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.EXACT_CODE
        assert result.confidence_score == 1.0
        assert result.quickbooks_item_id == "item-1"
        assert result.quickbooks_item_type == "Inventory"

    def test_exact_name_match(self, service):
        sku = InvoiceSkuFactory.create("X-1", name="PORCELAIN TILE")
        items = [QuickBooksFactory.item("item-1", "Porcelain Tile", sku="OTHER")]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.EXACT_NAME
        assert result.confidence_score == 0.95

    def test_fuzzy_name_match_is_discounted(self, service):
        """Should score a fuzzy match at similarity * 0.9."""
        sku = InvoiceSkuFactory.create("X-1", name="Porcelain Tile 24x24")
        items = [QuickBooksFactory.item("item-1", "Porcelain Tile 24x48")]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.FUZZY_NAME
        assert result.confidence_score == pytest.approx(0.81)

    def test_similarity_below_threshold_is_no_match(self, service):
        """Should not match a name with similarity just under 0.80."""
        # 4 edits over 19 characters: similarity ~0.79
        sku = InvoiceSkuFactory.create("PT-GREY", name="Porcelain Tile Grey")
        items = [QuickBooksFactory.item("item-1", "Porcelain Tile Blue", sku="PT-BLUE")]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.NO_MATCH
        assert result.quickbooks_item_id is None
        assert result.confidence_score == 0

    def test_best_fuzzy_candidate_wins(self, service):
        sku = InvoiceSkuFactory.create("X-1", name="Porcelain Tile 24x24")
        items = [
            QuickBooksFactory.item("item-far", "Porcelain Tile 12x48"),
            QuickBooksFactory.item("item-near", "Porcelain Tile 24x25"),
        ]

        result = service.classify(sku, items)

        assert result.quickbooks_item_id == "item-near"

    def test_ineligible_items_ignored(self, service):
        """Should never match inactive or soft-deleted items."""
        sku = InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile")
        items = [
            QuickBooksFactory.item("item-1", "Porcelain Tile (supprimé)", sku="TILE-001"),
            QuickBooksFactory.item("item-2", "Porcelain Tile", sku="TILE-001", active=False),
        ]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.NO_MATCH

    def test_sku_without_name_only_matches_code(self, service):
        sku = InvoiceSkuFactory.create("NOPE", name=None)
        items = [QuickBooksFactory.item("item-1", "Porcelain Tile", sku="TILE-001")]

        result = service.classify(sku, items)

        assert result.match_type == SkuMatchType.NO_MATCH


class TestMatchInvoiceSkus:
    """Tests for SkuMatchingService.match_invoice_skus_with_qb_items()"""

    def test_classifies_every_ledger_sku(self, service, fake_ledger, mock_books):
        fake_ledger.unique_skus = [
            InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile", invoice_count=5),
            InvoiceSkuFactory.create("GROUT-9", name="Grout"),
        ]
        mock_books.list_items.return_value = [QuickBooksFactory.item("item-1", "Porcelain Tile", sku="TILE-001")]

        results = service.match_invoice_skus_with_qb_items()

        assert [r.match_type for r in results] == [SkuMatchType.EXACT_CODE, SkuMatchType.NO_MATCH]
        assert results[0].invoice_count == 5

    def test_not_connected_returns_no_match(self, service, fake_ledger, mock_books):
        """Should degrade to no_match for every SKU when QuickBooks is not connected."""
        fake_ledger.unique_skus = [InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile")]
        mock_books.is_configured = False

        results = service.match_invoice_skus_with_qb_items()

        assert len(results) == 1
        assert results[0].match_type == SkuMatchType.NO_MATCH
        mock_books.list_items.assert_not_called()

    def test_quickbooks_failure_returns_no_match(self, service, fake_ledger, mock_books):
        fake_ledger.unique_skus = [InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile")]
        mock_books.list_items.side_effect = TransientQuickBooksError("503")

        results = service.match_invoice_skus_with_qb_items()

        assert results[0].match_type == SkuMatchType.NO_MATCH

    def test_stats(self, service, fake_ledger, mock_books):
        fake_ledger.unique_skus = [
            InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile"),
            InvoiceSkuFactory.create("X", name="Grout"),
        ]
        mock_books.list_items.return_value = [QuickBooksFactory.item("item-1", "Porcelain Tile", sku="TILE-001")]

        stats = service.get_sku_match_stats()

        assert stats.total == 2
        assert stats.matched == 1
        assert stats.unmatched == 1
        assert stats.by_match_type["exact_code"] == 1
        assert stats.by_match_type["no_match"] == 1
        assert stats.by_match_type["fuzzy_name"] == 0


class TestApproval:
    """Tests for approve_match / approve_all_matches"""

    def test_approve_match_upserts_by_code(self, service, store):
        approval = SkuMatchApproval(
            atek_sku_code="TILE-001",
            quickbooks_item_id="item-1",
            quickbooks_item_name="Porcelain Tile",
            match_type=SkuMatchType.FUZZY_NAME,
            confidence_score=0.81,
            approved_by="reviewer",
        )

        first = service.approve_match(approval)
        second = service.approve_match(approval.model_copy(update={"quickbooks_item_id": "item-2"}))

        assert first.mapping_status == SkuMappingStatus.APPROVED
        assert first.matching_method == "name_fuzzy"
        assert first.atek_sku_id == "TILE-001"
        assert second.mapping_id == first.mapping_id
        assert second.quickbooks_item_id == "item-2"
        assert len(store.find(SKU_MAPPING_TABLE)) == 1

    def test_approve_all_skips_no_match_and_already_approved(self, service, fake_ledger, mock_books, store):
        """Should only approve new or changed suggestions."""
        fake_ledger.unique_skus = [
            InvoiceSkuFactory.create("TILE-001", name="Porcelain Tile"),
            InvoiceSkuFactory.create("TILE-002", name="Marble Tile"),
            InvoiceSkuFactory.create("NONE-1", name="Nothing alike"),
        ]
        mock_books.list_items.return_value = [
            QuickBooksFactory.item("item-1", "Porcelain Tile", sku="TILE-001"),
            QuickBooksFactory.item("item-2", "Marble Tile", sku="TILE-002"),
        ]
        store.insert(SKU_MAPPING_TABLE, MappingRowFactory.sku("TILE-001", qb_item_id="item-1"))

        result = service.approve_all_matches("reviewer")

        assert result.total_processed == 3
        assert result.approved_count == 1
        assert result.skipped_count == 2
        row = service.find_mapping("TILE-002", None)
        assert row["quickbooks_item_id"] == "item-2"
        assert row["matching_method"] == "code_exact"

    def test_find_mapping_falls_back_to_sku_id(self, service, store):
        store.insert(SKU_MAPPING_TABLE, MappingRowFactory.sku("TILE-001", sku_id="sku-abc"))

        assert service.find_mapping("UNKNOWN", "sku-abc")["atek_sku_code"] == "TILE-001"
        assert service.find_mapping(None, None) is None

    def test_save_created_item(self, service):
        result = service.save_created_item("sku-1", "TILE-009", "New Tile", {"Id": 42, "Name": "New Tile", "Type": "Service"})

        assert result.quickbooks_item_id == "42"
        assert result.matching_method == "created"
        assert result.mapping_status == SkuMappingStatus.APPROVED

    def test_get_sku_mappings_by_status(self, service, store):
        store.insert(SKU_MAPPING_TABLE, MappingRowFactory.sku("A", status="approved"))
        store.insert(SKU_MAPPING_TABLE, MappingRowFactory.sku("B", status="needs_creation", qb_item_id=None))

        rows = service.get_sku_mappings(SkuMappingStatus.NEEDS_CREATION)

        assert [r.atek_sku_code for r in rows] == ["B"]

    def test_income_accounts(self, service, mock_books):
        mock_books.get_income_accounts.return_value = [{"value": "79", "name": "Sales"}]

        assert service.get_income_accounts() == [{"value": "79", "name": "Sales"}]

    def test_income_accounts_not_connected(self, service, mock_books):
        mock_books.is_configured = False

        assert service.get_income_accounts() == []
        mock_books.get_income_accounts.assert_not_called()
