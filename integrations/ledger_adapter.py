"""
Ledger document normalization.

ATEK documents carry several legacy spellings for the same concept
(subtotals as an object or an array, notes as a string or a list,
customer vs. organisation). All of that branching lives here; services
only ever see the models in models/ledger.py.
"""

from datetime import date, datetime
from typing import Any, Optional

from models.ledger import (
    LedgerInvoice,
    LedgerLineItem,
    LedgerOrganization,
    LedgerManager,
    LedgerSite,
    InvoiceSku,
)


def to_id(value: Any) -> Optional[str]:
    """ObjectId or string → string id."""
    if value is None or value == "":
        return None
    return str(value)


def to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _org_number(value: Any) -> Optional[int]:
    """Legacy org_num values may be strings; unparseable ones become None."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_line_item(raw: dict) -> LedgerLineItem:
    """
    Map one entry of invoice.skus[].

    Amount is the stored total when present, otherwise
    quantity * unit_price less the percentage discount.
    """
    quantity = _number(raw.get("quantity"))
    unit_price = _number(raw.get("unit_price"))
    discount = _number(raw.get("discount"))

    gross = quantity * unit_price
    discount_amount = gross * discount / 100 if discount > 0 else 0
    total = raw.get("total")
    amount = _number(total) if total not in (None, "") else gross - discount_amount

    sku_id = to_id(raw.get("sku")) or ""

    return LedgerLineItem(
        sku_id=sku_id,
        sku_code=raw.get("code") or sku_id or None,
        sku_name=raw.get("name") or None,
        description=raw.get("description") or None,
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        amount=amount,
        taxable=bool(raw.get("taxable", False)),
    )


def _subtotal_and_tax(doc: dict, calculated_subtotal: float) -> tuple[float, float]:
    subtotals = doc.get("subtotals")

    if isinstance(subtotals, dict):
        subtotal = _number(subtotals.get("subtotal")) or calculated_subtotal
        return subtotal, _number(subtotals.get("tax"))

    # Array form (discount groups) or missing: tax comes from taxesAdded
    taxes = doc.get("taxesAdded")
    tax = sum(_number(t.get("amount")) for t in taxes) if isinstance(taxes, list) else 0.0
    return calculated_subtotal, tax


def _notes(raw: Any) -> Optional[str]:
    if isinstance(raw, list):
        parts = []
        for note in raw:
            if isinstance(note, str):
                parts.append(note)
            elif isinstance(note, dict):
                parts.append(note.get("text") or note.get("content") or note.get("note") or "")
        joined = "\n".join(p for p in parts if p)
        return joined or None
    return raw or None


def normalize_invoice(doc: dict) -> LedgerInvoice:
    line_items = [normalize_line_item(item) for item in doc.get("skus") or []]
    calculated_subtotal = sum(item.amount for item in line_items)
    subtotal, tax_amount = _subtotal_and_tax(doc, calculated_subtotal)

    shipping = [
        entry["address"]
        for entry in doc.get("shipping_addresses") or []
        if isinstance(entry, dict) and entry.get("address")
    ]

    total = _number(doc.get("total")) or subtotal + tax_amount

    return LedgerInvoice(
        id=str(doc["_id"]),
        invoice_number=doc.get("invoice_number") or "",
        # 'customer' is the billed organization; 'organisation' is the issuer on newer docs
        organization_id=to_id(doc.get("customer")) or to_id(doc.get("organisation")) or "",
        manager_id=to_id(doc.get("contractual_manager")),
        status=doc.get("status") or "draft",
        issue_date=to_date(doc.get("date")),
        due_date=to_date(doc.get("expiration_date")),
        billing_site_id=to_id(doc.get("billing_site")),
        billing_address=doc.get("billing_address") or None,
        shipping_addresses=shipping,
        line_items=line_items,
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=total,
        currency=doc.get("currency") or "CAD",
        notes=_notes(doc.get("notes")),
        private_notes=doc.get("internal_notes") or None,
        po_number=doc.get("po_number") or None,
        project_name=doc.get("project_name") or None,
    )


def normalize_site(doc: Optional[dict]) -> Optional[LedgerSite]:
    if not doc:
        return None
    return LedgerSite(
        id=to_id(doc.get("_id")),
        name=doc.get("name"),
        address=doc.get("address"),
        city=doc.get("city"),
        state=doc.get("state"),
        postal_code=doc.get("postalCode"),
        country=doc.get("country"),
        email=doc.get("email"),
        phone=doc.get("phone"),
    )


def normalize_organization(doc: dict) -> LedgerOrganization:
    sites = doc.get("sites") or []
    return LedgerOrganization(
        id=str(doc["_id"]),
        name=doc.get("name") or "",
        enabled=bool(doc.get("enabled", True)),
        org_number=_org_number(doc.get("org_num")),
        tags=list(doc.get("tags") or []),
        description=doc.get("description") or None,
        primary_site=normalize_site(sites[0]) if sites else None,
    )


def normalize_manager(doc: dict) -> LedgerManager:
    """Name from first/last name, then 'name', then the email prefix."""
    email = doc.get("email") or ""
    first = doc.get("firstname") or doc.get("firstName")
    last = doc.get("lastname") or doc.get("lastName")
    name = " ".join(p for p in (first, last) if p) or doc.get("name") or email.split("@")[0] or "Unknown"

    return LedgerManager(id=str(doc["_id"]), name=name, email=email)


def normalize_invoice_sku(row: dict) -> InvoiceSku:
    """
    Map one row of the distinct-SKU aggregation.

    Code falls back to the SKU id; name falls back to the first line of
    the description.
    """
    sku_id = row.get("sku_id") or str(row.get("_id") or "")
    description = row.get("description") or None
    name = row.get("name") or (description.split("\n")[0].strip() if description else None)

    return InvoiceSku(
        sku_id=sku_id,
        code=row.get("code") or sku_id,
        name=name,
        description=description,
        unit_price=row.get("unit_price") or None,
        taxable=bool(row.get("taxable") or False),
        invoice_count=int(row.get("invoice_count") or 0),
    )
