"""
Shared test fixtures.

The mapping store runs against an in-memory Supabase stand-in that
honours the query builder calls MappingStore makes. The ledger is an
in-memory LedgerClient double; QuickBooks is a spec'd MagicMock.
"""

import os
import sys
from pathlib import Path

# Settings are loaded at import time
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from unittest.mock import MagicMock
from typing import Iterable, Optional

from config import (
    CUSTOMER_MAPPING_TABLE,
    SKU_MAPPING_TABLE,
    INVOICE_VALIDATION_TABLE,
    MATCH_LOG_TABLE,
)
from integrations.quickbooks import QuickBooksClient
from models.ledger import SYNC_ELIGIBLE_STATUSES, LedgerInvoice, LedgerOrganization
from services.mapping_store import MappingStore

ID_COLUMNS = {
    CUSTOMER_MAPPING_TABLE: "mapping_id",
    SKU_MAPPING_TABLE: "mapping_id",
    INVOICE_VALIDATION_TABLE: "validation_id",
    MATCH_LOG_TABLE: "log_id",
}


# ===================
# FAKE SUPABASE CLIENT
# ===================

class FakeSupabaseResponse:
    """Supabase query response."""

    def __init__(self, data: list, count: Optional[int] = None):
        self.data = data
        self.count = count if count is not None else len(data)


class FakeSupabaseQuery:
    """Chainable query that runs against the table's rows on execute()."""

    def __init__(self, table: "FakeSupabaseTable", operation: str, payload=None):
        self._table = table
        self._operation = operation
        self._payload = payload
        self._filters = []
        self._order = None
        self._range = None
        self._limit = None

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> list[dict]:
        return [row for row in self._table.rows if all(f(row) for f in self._filters)]

    def execute(self) -> FakeSupabaseResponse:
        if self._operation == "insert":
            return FakeSupabaseResponse(self._table.add(self._payload))

        if self._operation == "update":
            updated = []
            for row in self._matching():
                row.update(self._payload)
                updated.append(dict(row))
            return FakeSupabaseResponse(updated)

        if self._operation == "delete":
            doomed = self._matching()
            self._table.rows = [row for row in self._table.rows if row not in doomed]
            return FakeSupabaseResponse([dict(row) for row in doomed])

        rows = [dict(row) for row in self._matching()]
        total = len(rows)
        if self._order:
            column, desc = self._order
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            rows = sorted(present, key=lambda r: r[column], reverse=desc) + missing
        if self._range:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]
        return FakeSupabaseResponse(rows, total)


class FakeSupabaseTable:
    """One table: rows plus an auto-increment id column."""

    def __init__(self, name: str):
        self.name = name
        self.rows: list[dict] = []
        self.id_column = ID_COLUMNS.get(name, "id")
        self._next_id = 1

    def add(self, data) -> list[dict]:
        items = data if isinstance(data, list) else [data]
        inserted = []
        for item in items:
            row = {self.id_column: self._next_id, **item}
            self._next_id += 1
            self.rows.append(row)
            inserted.append(dict(row))
        return inserted

    def select(self, *args, **kwargs):
        return FakeSupabaseQuery(self, "select")

    def insert(self, data):
        return FakeSupabaseQuery(self, "insert", data)

    def update(self, data):
        return FakeSupabaseQuery(self, "update", data)

    def delete(self):
        return FakeSupabaseQuery(self, "delete")


class FakeSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self._tables: dict[str, FakeSupabaseTable] = {}

    def table(self, name: str) -> FakeSupabaseTable:
        if name not in self._tables:
            self._tables[name] = FakeSupabaseTable(name)
        return self._tables[name]

    def rows(self, name: str) -> list[dict]:
        """Raw stored rows (JSON columns still serialized)."""
        return self.table(name).rows


# ===================
# FAKE LEDGER
# ===================

class FakeLedger:
    """In-memory stand-in for LedgerClient."""

    def __init__(self):
        self.invoices: dict[str, LedgerInvoice] = {}
        self.organizations: dict[str, LedgerOrganization] = {}
        self.managers: dict = {}
        self.managers_by_org: dict[str, list] = {}
        self.unique_skus: list = []

    def add_invoice(self, invoice: LedgerInvoice) -> LedgerInvoice:
        self.invoices[invoice.id] = invoice
        return invoice

    def add_organization(self, org: LedgerOrganization) -> LedgerOrganization:
        self.organizations[org.id] = org
        return org

    def add_manager(self, organization_id: str, manager) -> None:
        self.managers[manager.id] = manager
        self.managers_by_org.setdefault(organization_id, []).append(manager)

    def get_invoice(self, invoice_id: str) -> Optional[LedgerInvoice]:
        return self.invoices.get(invoice_id)

    def get_invoice_by_number(self, invoice_number: str) -> Optional[LedgerInvoice]:
        return next((i for i in self.invoices.values() if i.invoice_number == invoice_number), None)

    def list_invoices(
        self,
        statuses: Iterable[str] = SYNC_ELIGIBLE_STATUSES,
        start_date=None,
        end_date=None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 1000,
        skip: int = 0,
    ) -> list[LedgerInvoice]:
        excluded = set(exclude_ids or [])
        allowed = set(statuses)
        rows = [
            invoice for invoice in self.invoices.values()
            if invoice.status in allowed and invoice.id not in excluded
        ]
        return rows[skip:skip + limit]

    def get_unique_skus(self, statuses: Iterable[str] = SYNC_ELIGIBLE_STATUSES) -> list:
        return list(self.unique_skus)

    def get_managers_by_organization(self) -> dict[str, list]:
        return {org_id: list(managers) for org_id, managers in self.managers_by_org.items()}

    def get_organization(self, organization_id: str) -> Optional[LedgerOrganization]:
        return self.organizations.get(organization_id)

    def list_customer_organizations(self) -> list[LedgerOrganization]:
        return [o for o in self.organizations.values() if o.enabled and "customer" in o.tags]

    def list_organizations(self) -> list[LedgerOrganization]:
        return [o for o in self.organizations.values() if o.enabled]

    def get_manager(self, manager_id: str):
        return self.managers.get(manager_id)

    def get_managers(self, manager_ids: Iterable[str]) -> list:
        return [self.managers[m] for m in manager_ids if m in self.managers]

    def get_site(self, site_id: str):
        return None


# ===================
# FIXTURES
# ===================

@pytest.fixture
def fake_supabase() -> FakeSupabaseClient:
    """
    Empty in-memory Supabase client.

    Usage:
        def test_something(store, fake_supabase):
            store.insert("sku_mapping", {...})
            assert len(fake_supabase.rows("sku_mapping")) == 1
    """
    return FakeSupabaseClient()


@pytest.fixture
def store(fake_supabase) -> MappingStore:
    return MappingStore(db=fake_supabase)


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def mock_books() -> MagicMock:
    """
    Connected QuickBooks client double.

    Lists and searches return nothing until a test configures them.
    """
    books = MagicMock(spec=QuickBooksClient)
    books.is_configured = True
    books.list_customers.return_value = []
    books.list_items.return_value = []
    books.search_invoices.return_value = []
    books.find_invoice_by_doc_number.return_value = None
    books.get_customer.return_value = None
    books.get_item.return_value = None
    return books


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client():
    """
    FastAPI test client. The lifespan handler is not run.

    Usage:
        def test_endpoint(test_client):
            with patch("routes.sync.get_invoice_sync_service", return_value=service):
                response = test_client.get("/api/sync/stats")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
