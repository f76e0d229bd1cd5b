"""
ATEK ledger connector (MongoDB, read-only).

Every method returns normalized models from models/ledger.py; raw
documents never leave this module and integrations/ledger_adapter.py.
"""

from datetime import datetime
from functools import lru_cache
from typing import Any, Iterable, Optional
import structlog
from bson import ObjectId
from pymongo import MongoClient, DESCENDING
from pymongo.errors import PyMongoError

from config import settings
from exceptions import LedgerConnectionError
from integrations.ledger_adapter import (
    normalize_invoice,
    normalize_invoice_sku,
    normalize_manager,
    normalize_organization,
    normalize_site,
)
from models.ledger import (
    SYNC_ELIGIBLE_STATUSES,
    InvoiceSku,
    LedgerInvoice,
    LedgerManager,
    LedgerOrganization,
    LedgerSite,
)

logger = structlog.get_logger(__name__)

INVOICES = "invoices"
ORGANIZATIONS = "organizations"
USERS = "users"
SITES = "sites"


def _oid(value: Any) -> Any:
    """Use ObjectId when the string looks like one."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class LedgerClient:
    """Read-only access to the ledger collections."""

    def __init__(self, database=None):
        if database is None:
            client = MongoClient(
                settings.ledger_mongo_uri,
                readPreference="secondaryPreferred",
                serverSelectionTimeoutMS=settings.ledger_timeout_ms,
                maxPoolSize=10,
            )
            database = client[settings.ledger_database]
        self.db = database

    def close(self) -> None:
        self.db.client.close()

    def _find(self, collection: str, query: dict, **kwargs) -> list[dict]:
        try:
            return list(self.db[collection].find(query, **kwargs))
        except PyMongoError as e:
            logger.error("ledger_query_failed", collection=collection, error=str(e))
            raise LedgerConnectionError(f"Ledger query failed: {e}") from e

    def _find_one(self, collection: str, query: dict) -> Optional[dict]:
        try:
            return self.db[collection].find_one(query)
        except PyMongoError as e:
            logger.error("ledger_query_failed", collection=collection, error=str(e))
            raise LedgerConnectionError(f"Ledger query failed: {e}") from e

    def _aggregate(self, collection: str, pipeline: list[dict]) -> list[dict]:
        try:
            return list(self.db[collection].aggregate(pipeline))
        except PyMongoError as e:
            logger.error("ledger_aggregate_failed", collection=collection, error=str(e))
            raise LedgerConnectionError(f"Ledger aggregation failed: {e}") from e

    # ===================
    # INVOICES
    # ===================

    def get_invoice(self, invoice_id: str) -> Optional[LedgerInvoice]:
        doc = self._find_one(INVOICES, {"_id": _oid(invoice_id)})
        return normalize_invoice(doc) if doc else None

    def get_invoice_by_number(self, invoice_number: str) -> Optional[LedgerInvoice]:
        doc = self._find_one(INVOICES, {"invoice_number": invoice_number})
        return normalize_invoice(doc) if doc else None

    def list_invoices(
        self,
        statuses: Iterable[str] = SYNC_ELIGIBLE_STATUSES,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        limit: int = 1000,
        skip: int = 0,
    ) -> list[LedgerInvoice]:
        """
        List invoices by status, newest first.

        Args:
            statuses: Status set to include (sync-eligible by default)
            start_date: Inclusive lower bound on issue date
            end_date: Inclusive upper bound on issue date
            exclude_ids: Invoice ids to leave out
            limit: Max invoices
            skip: Offset
        """
        query: dict[str, Any] = {"status": {"$in": list(statuses)}}

        if start_date or end_date:
            query["date"] = {}
            if start_date:
                query["date"]["$gte"] = start_date
            if end_date:
                query["date"]["$lte"] = end_date

        if exclude_ids:
            query["_id"] = {"$nin": [_oid(i) for i in exclude_ids]}

        docs = self._find(INVOICES, query, sort=[("date", DESCENDING)], skip=skip, limit=limit)
        return [normalize_invoice(doc) for doc in docs]

    def get_unique_skus(self, statuses: Iterable[str] = SYNC_ELIGIBLE_STATUSES) -> list[InvoiceSku]:
        """Distinct SKUs across invoices, most used first."""
        pipeline = [
            {"$match": {"status": {"$in": list(statuses)}}},
            {"$unwind": "$skus"},
            {
                "$group": {
                    "_id": {"$ifNull": ["$skus.code", {"$toString": "$skus.sku"}]},
                    "sku_id": {"$first": {"$toString": "$skus.sku"}},
                    "code": {"$first": "$skus.code"},
                    "name": {"$first": "$skus.name"},
                    "description": {"$first": "$skus.description"},
                    "unit_price": {"$first": "$skus.unit_price"},
                    "taxable": {"$first": {"$ifNull": ["$skus.taxable", False]}},
                    "invoice_count": {"$sum": 1},
                }
            },
            {"$sort": {"invoice_count": -1}},
        ]
        return [normalize_invoice_sku(row) for row in self._aggregate(INVOICES, pipeline)]

    def get_managers_by_organization(self) -> dict[str, list[LedgerManager]]:
        """Contractual managers seen on each customer's invoices."""
        rows = self._aggregate(INVOICES, [
            {"$match": {
                "contractual_manager": {"$exists": True, "$ne": None},
                "customer": {"$exists": True, "$ne": None},
            }},
            {"$group": {"_id": "$customer", "manager_ids": {"$addToSet": "$contractual_manager"}}},
        ])

        org_manager_ids = {str(row["_id"]): [str(m) for m in row["manager_ids"]] for row in rows}
        all_ids = {m for ids in org_manager_ids.values() for m in ids}
        managers = {m.id: m for m in self.get_managers(all_ids)}

        return {
            org_id: [managers[m] for m in ids if m in managers]
            for org_id, ids in org_manager_ids.items()
        }

    # ===================
    # ORGANIZATIONS / USERS / SITES
    # ===================

    def get_organization(self, organization_id: str) -> Optional[LedgerOrganization]:
        doc = self._find_one(ORGANIZATIONS, {"_id": _oid(organization_id)})
        return normalize_organization(doc) if doc else None

    def list_customer_organizations(self) -> list[LedgerOrganization]:
        """Enabled organizations tagged 'customer'."""
        docs = self._find(ORGANIZATIONS, {"enabled": True, "tags": "customer"})
        return [normalize_organization(doc) for doc in docs]

    def list_organizations(self) -> list[LedgerOrganization]:
        docs = self._find(ORGANIZATIONS, {"enabled": True})
        return [normalize_organization(doc) for doc in docs]

    def get_manager(self, manager_id: str) -> Optional[LedgerManager]:
        doc = self._find_one(USERS, {"_id": _oid(manager_id)})
        return normalize_manager(doc) if doc else None

    def get_managers(self, manager_ids: Iterable[str]) -> list[LedgerManager]:
        ids = [_oid(i) for i in manager_ids if i]
        if not ids:
            return []
        return [normalize_manager(doc) for doc in self._find(USERS, {"_id": {"$in": ids}})]

    def get_site(self, site_id: str) -> Optional[LedgerSite]:
        return normalize_site(self._find_one(SITES, {"_id": _oid(site_id)}))


@lru_cache()
def get_ledger_client() -> LedgerClient:
    """Get cached ledger client instance."""
    logger.info("connecting_to_ledger", database=settings.ledger_database)
    return LedgerClient()
