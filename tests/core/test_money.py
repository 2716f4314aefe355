"""Tests for core/money.py - fixed-point money arithmetic."""

from decimal import Decimal

from core.money import (
    ZERO, multiply, negate, percent_of, round_money, to_decimal, total_of,
)


class TestToDecimal:
    """Tests for to_decimal()."""

    def test_float_goes_through_str(self):
        """0.1 must not pick up its binary expansion."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_decimal_passes_through(self):
        value = Decimal("12.3456")
        assert to_decimal(value) is value

    def test_int_and_str(self):
        assert to_decimal(5) == Decimal("5")
        assert to_decimal("7.25") == Decimal("7.25")


class TestRoundMoney:
    """Tests for round_money() - half up to two places."""

    def test_half_rounds_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")

    def test_below_half_rounds_down(self):
        assert round_money(Decimal("2.344")) == Decimal("2.34")

    def test_negative_half_rounds_away_from_zero(self):
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_result_has_two_places(self):
        assert str(round_money(Decimal("10"))) == "10.00"


class TestWorkingPrecision:
    """multiply() and percent_of() keep four places for chained steps."""

    def test_multiply_keeps_four_places(self):
        assert multiply(Decimal("0.333"), Decimal("0.5")) == Decimal("0.1665")

    def test_percent_of(self):
        assert percent_of(Decimal("135"), Decimal("10")) == Decimal("13.5000")

    def test_percent_of_none_rate_is_zero(self):
        assert percent_of(Decimal("135"), None) == ZERO

    def test_tenths_do_not_drift(self):
        """Summing 0.1 ten times is exactly 1 (no float error)."""
        assert total_of([0.1] * 10) == Decimal("1.0")


class TestNegateAndTotal:

    def test_negate(self):
        assert negate(Decimal("25.00")) == Decimal("-25.00")

    def test_total_of_empty_is_zero(self):
        assert total_of([]) == ZERO

    def test_total_of_mixed_signs(self):
        assert total_of([Decimal("100"), Decimal("-30.50")]) == Decimal("69.50")
