"""Tests for core/totals.py - invoice totals calculation."""

from decimal import Decimal

import pytest

from core.errors import LedgerValidationError
from core.models import DiscountType, InvoiceItemCreate
from core.totals import calculate_discount, calculate_item_total, calculate_totals


def line(unit_price, quantity="1", **kwargs) -> InvoiceItemCreate:
    return InvoiceItemCreate(
        description="Line",
        unit_price=Decimal(unit_price),
        quantity=Decimal(quantity),
        **kwargs,
    )


class TestItemTotal:
    """Tests for calculate_item_total()."""

    def test_price_times_quantity(self):
        assert calculate_item_total(line("50", "2")) == Decimal("100.00")

    def test_fixed_discount_then_tax(self):
        """Discount comes off the line before item tax is applied."""
        item = line("50", "2", discount=Decimal("10"), tax_rate=Decimal("14"))
        # (100 - 10) * 1.14
        assert calculate_item_total(item) == Decimal("102.60")

    def test_rounds_half_up(self):
        # 3 * 0.335 = 1.005 -> 1.01
        assert calculate_item_total(line("0.335", "3")) == Decimal("1.01")

    def test_discount_larger_than_line_rejected(self):
        with pytest.raises(LedgerValidationError, match="exceeds line amount"):
            calculate_item_total(line("10", "1", discount=Decimal("11")))


class TestDiscount:
    """Tests for calculate_discount()."""

    def test_none_type_is_zero(self):
        assert calculate_discount(Decimal("100"), DiscountType.NONE, Decimal("5")) == Decimal("0")

    def test_missing_value_is_zero(self):
        assert calculate_discount(Decimal("100"), DiscountType.FIXED, None) == Decimal("0")

    def test_percentage(self):
        assert calculate_discount(Decimal("145"), DiscountType.PERCENTAGE, Decimal("10")) == Decimal("14.50")

    def test_fixed(self):
        assert calculate_discount(Decimal("145"), DiscountType.FIXED, Decimal("10")) == Decimal("10.00")

    def test_percentage_over_hundred_rejected(self):
        with pytest.raises(LedgerValidationError):
            calculate_discount(Decimal("100"), DiscountType.PERCENTAGE, Decimal("101"))


class TestCalculateTotals:
    """Tests for calculate_totals()."""

    def test_worked_example(self):
        """Two items, fixed discount of 10, 10% invoice tax."""
        totals = calculate_totals(
            [line("50", "2"), line("45", "1")],
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("10"),
            tax_rate=Decimal("10"),
        )

        assert totals.subtotal == Decimal("145.00")
        assert totals.discount_amount == Decimal("10.00")
        assert totals.tax_amount == Decimal("13.50")
        assert totals.total == Decimal("148.50")

    def test_total_identity_holds(self):
        totals = calculate_totals(
            [line("19.99", "3"), line("0.01", "7")],
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("12.5"),
            tax_rate=Decimal("14"),
        )
        assert totals.total == totals.subtotal - totals.discount_amount + totals.tax_amount

    def test_subtotal_is_sum_of_rounded_items(self):
        """Each item is rounded before summing: 0.005 + 0.005 -> 0.01 + 0.01."""
        totals = calculate_totals([line("0.005"), line("0.005")])
        assert [c.total for c in totals.items] == [Decimal("0.01"), Decimal("0.01")]
        assert totals.subtotal == Decimal("0.02")

    def test_item_and_invoice_tax_compound(self):
        """Invoice tax applies on top of tax-inclusive item totals."""
        totals = calculate_totals([line("100", tax_rate=Decimal("10"))], tax_rate=Decimal("10"))

        assert totals.subtotal == Decimal("110.00")
        assert totals.tax_amount == Decimal("11.00")
        assert totals.total == Decimal("121.00")

    def test_items_keep_order(self):
        totals = calculate_totals([line("3"), line("1"), line("2")])
        assert [c.order for c in totals.items] == [0, 1, 2]
        assert [c.item.unit_price for c in totals.items] == [Decimal("3"), Decimal("1"), Decimal("2")]

    def test_no_items_rejected(self):
        with pytest.raises(LedgerValidationError, match="at least one item"):
            calculate_totals([])

    def test_discount_above_subtotal_rejected(self):
        with pytest.raises(LedgerValidationError, match="exceeds invoice subtotal"):
            calculate_totals([line("10")], DiscountType.FIXED, Decimal("10.01"))

    def test_full_percentage_discount_gives_zero_total(self):
        totals = calculate_totals([line("80")], DiscountType.PERCENTAGE, Decimal("100"), Decimal("14"))
        assert totals.total == Decimal("0.00")

    def test_deterministic(self):
        items = [line("33.33", "3"), line("12.5", "2", discount=Decimal("1"))]
        assert calculate_totals(items, tax_rate=Decimal("7")) == calculate_totals(items, tax_rate=Decimal("7"))
