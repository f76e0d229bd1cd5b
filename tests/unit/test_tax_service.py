"""
Unit tests for Quebec tax computation.

Run: pytest tests/unit/test_tax_service.py -v
"""

from decimal import Decimal

from services.tax_service import build_txn_tax_detail, calculate_quebec_taxes, round_cents


class TestCalculateQuebecTaxes:
    """Tests for calculate_quebec_taxes()"""

    def test_round_subtotal(self):
        """Should compute GST 5% and QST 9.975% on the same base."""
        result = calculate_quebec_taxes(1000)

        assert result.subtotal == Decimal("1000.00")
        assert result.gst == Decimal("50.00")
        assert result.qst == Decimal("99.75")
        assert result.total_tax == Decimal("149.75")
        assert result.total == Decimal("1149.75")

    def test_each_tax_rounded_half_up(self):
        """Should round GST and QST to cents independently."""
        result = calculate_quebec_taxes(33.33)

        # 1.6665 → 1.67, 3.3246675 → 3.32
        assert result.gst == Decimal("1.67")
        assert result.qst == Decimal("3.32")
        assert result.total_tax == Decimal("4.99")

    def test_zero_subtotal(self):
        result = calculate_quebec_taxes(0)

        assert result.total_tax == Decimal("0.00")
        assert result.total == Decimal("0.00")

    def test_round_cents_half_up(self):
        assert round_cents(0.125) == Decimal("0.13")
        assert round_cents("2.345") == Decimal("2.35")


class TestBuildTxnTaxDetail:
    """Tests for build_txn_tax_detail()"""

    def test_one_tax_line_per_tax(self):
        """Should send both GST and QST lines with rate refs and taxable base."""
        detail = build_txn_tax_detail(1000)

        assert detail["TxnTaxCodeRef"] == {"value": "TAX"}
        assert detail["TotalTax"] == 149.75

        gst_line, qst_line = detail["TaxLine"]
        assert gst_line["Amount"] == 50.0
        assert gst_line["DetailType"] == "TaxLineDetail"
        assert gst_line["TaxLineDetail"]["TaxRateRef"] == {"value": "3"}
        assert gst_line["TaxLineDetail"]["TaxPercent"] == 5.0
        assert gst_line["TaxLineDetail"]["NetAmountTaxable"] == 1000.0

        assert qst_line["Amount"] == 99.75
        assert qst_line["TaxLineDetail"]["TaxRateRef"] == {"value": "4"}
        assert qst_line["TaxLineDetail"]["TaxPercent"] == 9.975
