"""
Unit tests for MappingStore.

Run: pytest tests/unit/test_mapping_store.py -v
"""

import json

import pytest
from unittest.mock import MagicMock

from config import CUSTOMER_MAPPING_TABLE, INVOICE_VALIDATION_TABLE
from exceptions import DatabaseError
from services.mapping_store import (
    MappingStore,
    UpsertAction,
    is_human_decision,
    is_synced,
)
from tests.factories import MappingRowFactory


class TestMappingStoreJsonColumns:
    """JSON columns are serialized on write and parsed on read"""

    def test_insert_serializes_json_columns(self, store, fake_supabase):
        """Should store confidence_factors as a JSON string."""
        store.insert(CUSTOMER_MAPPING_TABLE, {
            **MappingRowFactory.customer(),
            "confidence_factors": {"org_num_match": True, "name_score": 0.9},
        })

        raw = fake_supabase.rows(CUSTOMER_MAPPING_TABLE)[0]
        assert isinstance(raw["confidence_factors"], str)
        assert json.loads(raw["confidence_factors"])["org_num_match"] is True

    def test_find_parses_json_columns(self, store):
        store.insert(INVOICE_VALIDATION_TABLE, {
            "atek_invoice_id": "inv-1",
            "validation_status": "blocked",
            "blocking_issues": [{"code": "SKU_NO_MAPPING"}],
        })

        row = store.find_one(INVOICE_VALIDATION_TABLE, {"atek_invoice_id": "inv-1"})

        assert row["blocking_issues"] == [{"code": "SKU_NO_MAPPING"}]

    def test_unreadable_json_becomes_none(self, store, fake_supabase):
        """Should not fail on a corrupt JSON column."""
        fake_supabase.table(INVOICE_VALIDATION_TABLE).add({
            "atek_invoice_id": "inv-1",
            "blocking_issues": "{not json",
        })

        row = store.find_one(INVOICE_VALIDATION_TABLE, {"atek_invoice_id": "inv-1"})

        assert row["blocking_issues"] is None

    def test_insert_sets_audit_timestamps(self, store):
        row = store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer())

        assert row["created_date"]
        assert row["last_modified_date"]
        assert row["mapping_id"] == 1


class TestMappingStoreFind:
    """Tests for MappingStore.find()"""

    def test_equality_and_in_filters(self, store):
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-1", status="approved"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-2", status="proposed"))
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer("org-3", status="rejected"))

        rows = store.find(CUSTOMER_MAPPING_TABLE, in_filters={"mapping_status": ("approved", "proposed")})
        one = store.find(CUSTOMER_MAPPING_TABLE, filters={"atek_organization_id": "org-2"})

        assert {r["atek_organization_id"] for r in rows} == {"org-1", "org-2"}
        assert len(one) == 1

    def test_order_and_pagination(self, store):
        for index, score in enumerate([0.5, 0.9, 0.7]):
            store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(f"org-{index}", confidence=score))

        rows = store.find(CUSTOMER_MAPPING_TABLE, order_by="confidence_score", desc=True, limit=2, offset=1)

        assert [r["confidence_score"] for r in rows] == [0.7, 0.5]

    def test_client_failure_raises_database_error(self):
        """Should wrap client errors in DatabaseError."""
        db = MagicMock()
        db.table.side_effect = RuntimeError("connection reset")
        store = MappingStore(db=db)

        with pytest.raises(DatabaseError):
            store.find(CUSTOMER_MAPPING_TABLE)


class TestMappingStoreUpsert:
    """Tests for MappingStore.upsert()"""

    def test_inserts_when_missing(self, store):
        key = {"atek_organization_id": "org-1", "atek_contractual_manager_id": ""}

        row, action = store.upsert(CUSTOMER_MAPPING_TABLE, key, {"mapping_status": "proposed"})

        assert action == UpsertAction.INSERTED
        assert row["atek_organization_id"] == "org-1"
        assert row["mapping_status"] == "proposed"

    def test_updates_existing(self, store, fake_supabase):
        key = {"atek_organization_id": "org-1", "atek_contractual_manager_id": ""}
        store.upsert(CUSTOMER_MAPPING_TABLE, key, {"mapping_status": "proposed", "confidence_score": 0.5})

        row, action = store.upsert(CUSTOMER_MAPPING_TABLE, key, {"mapping_status": "proposed", "confidence_score": 0.9})

        assert action == UpsertAction.UPDATED
        assert row["confidence_score"] == 0.9
        assert len(fake_supabase.rows(CUSTOMER_MAPPING_TABLE)) == 1

    def test_preserves_when_predicate_matches(self, store):
        """Should leave a human decision untouched."""
        key = {"atek_organization_id": "org-1", "atek_contractual_manager_id": ""}
        store.insert(CUSTOMER_MAPPING_TABLE, MappingRowFactory.customer(status="approved", qb_customer_id="qb-1"))

        row, action = store.upsert(
            CUSTOMER_MAPPING_TABLE,
            key,
            {"mapping_status": "proposed", "quickbooks_customer_id": "qb-2"},
            preserve_if=is_human_decision,
        )

        assert action == UpsertAction.PRESERVED
        stored = store.find_one(CUSTOMER_MAPPING_TABLE, key)
        assert stored["quickbooks_customer_id"] == "qb-1"
        assert stored["mapping_status"] == "approved"
        assert row["quickbooks_customer_id"] == "qb-1"


class TestMappingStoreDelete:
    def test_returns_deleted_count(self, store, fake_supabase):
        store.insert(INVOICE_VALIDATION_TABLE, {"atek_invoice_id": "a", "validation_status": "ready"})
        store.insert(INVOICE_VALIDATION_TABLE, {"atek_invoice_id": "b", "validation_status": "synced"})

        deleted = store.delete(INVOICE_VALIDATION_TABLE, in_filters={"validation_status": ["ready", "blocked"]})

        assert deleted == 1
        assert [r["atek_invoice_id"] for r in fake_supabase.rows(INVOICE_VALIDATION_TABLE)] == ["b"]


class TestPredicates:
    def test_is_human_decision(self):
        assert is_human_decision({"mapping_status": "approved"}) is True
        assert is_human_decision({"mapping_status": "rejected"}) is True
        assert is_human_decision({"mapping_status": "proposed"}) is False

    def test_is_synced(self):
        assert is_synced({"validation_status": "synced"}) is True
        assert is_synced({"validation_status": "ready"}) is False
