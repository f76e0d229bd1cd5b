"""
QuickBooks Online REST client.

Thin wrapper over the v3 accounting API: query, customer/item/invoice
reads and writes. Entities are returned as the raw JSON dicts QuickBooks
sends (PascalCase keys). Every call goes through with_retry, which
retries transient failures only.
"""

import time
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar
import requests
import structlog

from config import settings
from exceptions import (
    QuickBooksError,
    TransientQuickBooksError,
    QuickBooksNotConfiguredError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PAGE_SIZE = 100
TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


# ===================
# RETRY
# ===================

def is_transient(error: Exception) -> bool:
    """Rate limits, timeouts, network errors and 5xx are retryable."""
    return isinstance(error, TransientQuickBooksError)


def with_retry(
    operation: Callable[[], T],
    max_retries: Optional[int] = None,
    initial_delay_ms: Optional[int] = None,
    max_delay_ms: Optional[int] = None,
    retry_on: Callable[[Exception], bool] = is_transient,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run operation with bounded exponential backoff.

    Args:
        operation: Zero-arg callable to run
        max_retries: Retries after the first attempt (default from settings)
        initial_delay_ms: First delay; doubles each retry
        max_delay_ms: Delay ceiling
        retry_on: Predicate deciding whether an error is retryable
        sleep: Injected for tests

    Raises:
        The last error once retries are exhausted, or immediately for
        non-retryable errors
    """
    if max_retries is None:
        max_retries = settings.quickbooks_max_retries
    if initial_delay_ms is None:
        initial_delay_ms = settings.quickbooks_retry_initial_delay_ms
    if max_delay_ms is None:
        max_delay_ms = settings.quickbooks_retry_max_delay_ms

    delay = initial_delay_ms
    attempt = 0

    while True:
        try:
            return operation()
        except Exception as e:
            if attempt >= max_retries or not retry_on(e):
                raise

            attempt += 1
            logger.warning(
                "quickbooks_retry",
                attempt=attempt,
                max_retries=max_retries,
                delay_ms=delay,
                error=str(e)
            )
            sleep(delay / 1000)
            delay = min(delay * 2, max_delay_ms)


def _escape(value: str) -> str:
    """Escape a literal for the QuickBooks query language."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _fault_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]

    errors = (body.get("Fault") or {}).get("Error") or []
    if errors:
        first = errors[0]
        return first.get("Detail") or first.get("Message") or str(first)
    return str(body)[:500]


# ===================
# CLIENT
# ===================

class QuickBooksClient:
    """
    QuickBooks Online API client.

    Credentials come from settings; the OAuth token is refreshed by
    whatever process writes QUICKBOOKS_ACCESS_TOKEN.
    """

    def __init__(
        self,
        realm_id: Optional[str] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.realm_id = realm_id or settings.quickbooks_realm_id
        self.access_token = access_token or settings.quickbooks_access_token
        self.base_url = base_url or settings.quickbooks_base_url
        self.timeout = timeout or settings.quickbooks_timeout_seconds
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.realm_id and self.access_token)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
    ) -> dict:
        if not self.is_configured:
            raise QuickBooksNotConfiguredError()

        url = f"{self.base_url}/{self.realm_id}/{endpoint}"
        query_params = {"minorversion": settings.quickbooks_minor_version, **(params or {})}

        try:
            response = self.session.request(
                method,
                url,
                params=query_params,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise TransientQuickBooksError(f"QuickBooks request timeout: {e}") from e
        except requests.ConnectionError as e:
            raise TransientQuickBooksError(f"QuickBooks network error: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientQuickBooksError(
                f"QuickBooks API error: {response.status_code} - {_fault_message(response)}",
                http_status=response.status_code
            )

        if not response.ok:
            message = _fault_message(response)
            logger.error(
                "quickbooks_request_failed",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
                error=message
            )
            raise QuickBooksError(
                f"QuickBooks API error: {response.status_code} - {message}",
                http_status=response.status_code
            )

        return response.json()

    def _call(self, method: str, endpoint: str, params: Optional[dict] = None, body: Optional[dict] = None) -> dict:
        return with_retry(lambda: self._request(method, endpoint, params=params, body=body))

    # ===================
    # QUERY
    # ===================

    def query(self, statement: str) -> dict:
        """Run a query and return its QueryResponse object."""
        data = self._call("GET", "query", params={"query": statement})
        return data.get("QueryResponse") or {}

    def query_all(
        self,
        entity: str,
        where: Optional[str] = None,
        max_results: int = 5000,
    ) -> list[dict]:
        """
        Page through an entity with STARTPOSITION/MAXRESULTS.

        Args:
            entity: "Customer", "Item", "Invoice"...
            where: Optional WHERE clause body
            max_results: Stop after this many rows
        """
        rows: list[dict] = []
        start_position = 1
        where_clause = f" WHERE {where}" if where else ""

        while len(rows) < max_results:
            statement = (
                f"SELECT * FROM {entity}{where_clause} "
                f"STARTPOSITION {start_position} MAXRESULTS {PAGE_SIZE}"
            )
            page = self.query(statement).get(entity) or []
            if not page:
                break

            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break  # Last page
            start_position += PAGE_SIZE

        logger.debug("quickbooks_query_all", entity=entity, count=len(rows))
        return rows[:max_results]

    # ===================
    # CUSTOMERS
    # ===================

    def list_customers(self, active_only: bool = True) -> list[dict]:
        return self.query_all("Customer", "Active = true" if active_only else None)

    def get_customer(self, customer_id: str) -> Optional[dict]:
        rows = self.query(f"SELECT * FROM Customer WHERE Id = '{_escape(customer_id)}'").get("Customer") or []
        return rows[0] if rows else None

    def create_customer(self, data: dict) -> dict:
        logger.info("quickbooks_creating_customer", display_name=data.get("DisplayName"))
        return self._call("POST", "customer", body=data)["Customer"]

    def update_customer(self, customer_id: str, sync_token: str, updates: dict) -> dict:
        body = {"Id": customer_id, "SyncToken": sync_token, "sparse": True, **updates}
        return self._call("POST", "customer", body=body)["Customer"]

    # ===================
    # ITEMS
    # ===================

    def list_items(self, active_only: bool = True) -> list[dict]:
        return self.query_all("Item", "Active = true" if active_only else None)

    def get_item(self, item_id: str) -> Optional[dict]:
        rows = self.query(f"SELECT * FROM Item WHERE Id = '{_escape(item_id)}'").get("Item") or []
        return rows[0] if rows else None

    def create_item(self, data: dict) -> dict:
        """Create an item. Inventory items get quantity tracking."""
        item = {**data, "Active": True}
        if item.get("Type") == "Inventory":
            item["TrackQtyOnHand"] = True
            item.setdefault("InvStartDate", time.strftime("%Y-%m-%d"))
            item.setdefault("QtyOnHand", 0)

        logger.info("quickbooks_creating_item", name=item.get("Name"), type=item.get("Type"))
        return self._call("POST", "item", body=item)["Item"]

    def update_item(self, item_id: str, sync_token: str, updates: dict) -> dict:
        body = {"Id": item_id, "SyncToken": sync_token, "sparse": True, **updates}
        return self._call("POST", "item", body=body)["Item"]

    def get_income_accounts(self) -> list[dict]:
        statement = (
            "SELECT * FROM Account WHERE AccountType IN ('Income', 'Other Income') "
            "MAXRESULTS 500"
        )
        accounts = self.query(statement).get("Account") or []
        return [{"value": a["Id"], "name": a.get("Name", "")} for a in accounts]

    # ===================
    # INVOICES
    # ===================

    def get_invoice(self, invoice_id: str) -> Optional[dict]:
        rows = self.query(f"SELECT * FROM Invoice WHERE Id = '{_escape(invoice_id)}'").get("Invoice") or []
        return rows[0] if rows else None

    def find_invoice_by_doc_number(self, doc_number: str) -> Optional[dict]:
        """Exact DocNumber lookup."""
        rows = self.query(
            f"SELECT * FROM Invoice WHERE DocNumber = '{_escape(doc_number)}'"
        ).get("Invoice") or []
        return rows[0] if rows else None

    def search_invoices(self, doc_number: str) -> list[dict]:
        """Exact DocNumber match first, then a LIKE search."""
        exact = self.query(
            f"SELECT * FROM Invoice WHERE DocNumber = '{_escape(doc_number)}' MAXRESULTS 10"
        ).get("Invoice") or []
        if exact:
            return exact

        return self.query(
            f"SELECT * FROM Invoice WHERE DocNumber LIKE '%{_escape(doc_number)}%' MAXRESULTS 100"
        ).get("Invoice") or []

    def create_invoice(self, payload: dict) -> dict:
        logger.info("quickbooks_creating_invoice", doc_number=payload.get("DocNumber"))
        return self._call("POST", "invoice", body=payload)["Invoice"]

    def update_invoice(self, invoice_id: str, sync_token: str, payload: dict) -> dict:
        """Sparse update; Line and TxnTaxDetail are replaced wholesale."""
        body = {**payload, "Id": invoice_id, "SyncToken": sync_token, "sparse": True}
        logger.info("quickbooks_updating_invoice", invoice_id=invoice_id, doc_number=payload.get("DocNumber"))
        return self._call("POST", "invoice", body=body)["Invoice"]


@lru_cache()
def get_quickbooks_client() -> QuickBooksClient:
    """Get cached QuickBooks client instance."""
    client = QuickBooksClient()
    if not client.is_configured:
        logger.warning("quickbooks_not_configured")
    return client
