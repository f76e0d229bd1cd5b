"""
Quebec sales tax computation.

GST (5%) and QST (9.975%) are computed on the same subtotal and rounded
to cents independently. QuickBooks does not reliably apply tax from a
TaxCodeRef alone on updates, so the full TxnTaxDetail is always sent.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from config import settings
from models.base import BaseSchema

CENT = Decimal("0.01")


class TaxBreakdown(BaseSchema):
    subtotal: Decimal
    gst: Decimal
    qst: Decimal
    total_tax: Decimal
    total: Decimal


def round_cents(value: Union[Decimal, float, int, str]) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_quebec_taxes(subtotal: Union[Decimal, float, int]) -> TaxBreakdown:
    """
    Compute GST and QST on a subtotal.

    Example:
        1000.00 → gst 50.00, qst 99.75, total_tax 149.75
    """
    base = round_cents(subtotal)
    gst = round_cents(base * Decimal(str(settings.gst_rate)))
    qst = round_cents(base * Decimal(str(settings.qst_rate)))
    total_tax = gst + qst

    return TaxBreakdown(
        subtotal=base,
        gst=gst,
        qst=qst,
        total_tax=total_tax,
        total=base + total_tax,
    )


def _tax_line(amount: Decimal, rate_id: str, rate: float, taxable: Decimal) -> dict:
    return {
        "Amount": float(amount),
        "DetailType": "TaxLineDetail",
        "TaxLineDetail": {
            "TaxRateRef": {"value": rate_id},
            "PercentBased": True,
            "TaxPercent": float(Decimal(str(rate)) * 100),
            "NetAmountTaxable": float(taxable),
        },
    }


def build_txn_tax_detail(subtotal: Union[Decimal, float, int]) -> dict:
    """Build the QuickBooks TxnTaxDetail block with one line per tax."""
    taxes = calculate_quebec_taxes(subtotal)

    return {
        "TxnTaxCodeRef": {"value": settings.quickbooks_tax_code_id},
        "TotalTax": float(taxes.total_tax),
        "TaxLine": [
            _tax_line(taxes.gst, settings.quickbooks_gst_rate_id, settings.gst_rate, taxes.subtotal),
            _tax_line(taxes.qst, settings.quickbooks_qst_rate_id, settings.qst_rate, taxes.subtotal),
        ],
    }
