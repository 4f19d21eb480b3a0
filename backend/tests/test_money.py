"""
Unit tests per il tipo valore Money.
"""

from decimal import Decimal

import pytest

from app.core.exceptions import InvalidAmount
from app.core.money import Money, minor_units


# ============================================================
# Tests for construction
# ============================================================


class TestMoneyConstruction:
    """Tests for scale and rejection rules."""

    def test_amount_is_scaled_to_currency(self):
        """Test l'importo viene portato alla scala della valuta."""
        assert Money.of("70", "EUR").amount == Decimal("70.00")
        assert str(Money.of("5000", "XOF")) == "5000 XOF"

    def test_currency_is_normalized(self):
        assert Money.of("1.00", "eur").currency == "EUR"

    def test_float_is_rejected(self):
        """Test gli importi float sono rifiutati."""
        with pytest.raises(InvalidAmount) as exc_info:
            Money.of(0.1, "EUR")
        assert exc_info.value.error_code == "FLOAT_AMOUNT"

    def test_excess_precision_is_rejected(self):
        """Test più decimali di quelli ammessi generano errore."""
        with pytest.raises(InvalidAmount):
            Money.of("10.005", "EUR")
        with pytest.raises(InvalidAmount):
            Money.of("10.5", "XOF")

    def test_garbage_is_rejected(self):
        with pytest.raises(InvalidAmount):
            Money.of("dieci", "EUR")

    def test_minor_units(self):
        assert minor_units("EUR") == 2
        assert minor_units("XOF") == 0
        assert minor_units("TND") == 3


# ============================================================
# Tests for arithmetic
# ============================================================


class TestMoneyArithmetic:
    """Tests for sums, comparisons and rounding."""

    def test_sum_and_difference(self):
        total = Money.of("100.00") - Money.of("30.00") - Money.of("5.50")
        assert total == Money.of("64.50")

    def test_total_of_empty_sequence_is_zero(self):
        assert Money.total([], "EUR") == Money.zero("EUR")

    def test_currency_mismatch(self):
        """Test le operazioni tra valute diverse falliscono."""
        with pytest.raises(InvalidAmount) as exc_info:
            Money.of("1.00", "EUR") + Money.of("1.00", "USD")
        assert exc_info.value.error_code == "CURRENCY_MISMATCH"

        with pytest.raises(InvalidAmount):
            Money.of("1.00", "EUR") < Money.of("2.00", "USD")

    def test_ordering(self):
        assert Money.of("10.00") < Money.of("10.01")
        assert Money.of("10.01") >= Money.of("10.01")
        assert max(Money.of("3.00"), Money.of("7.00")) == Money.of("7.00")

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0.125", "0.12"),
            ("0.135", "0.14"),
            ("2.675", "2.68"),
            ("-0.125", "-0.12"),
        ],
    )
    def test_rounded_uses_half_even(self, value, expected):
        """Test arrotondamento bancario all'unità minima."""
        assert Money.rounded(value, "EUR").amount == Decimal(expected)

    def test_percentage(self):
        """Test 10% di 200.00 = 20.00."""
        assert Money.of("200.00").percentage(Decimal("10")) == Money.of("20.00")

    def test_percentage_rounds_half_even(self):
        # 12.5% di 0.20 = 0.025 -> 0.02
        assert Money.of("0.20").percentage("12.5") == Money.of("0.02")

    def test_predicates(self):
        assert Money.zero().is_zero
        assert Money.of("-1.00").is_negative
        assert Money.of("0.01").is_positive
        assert -Money.of("1.00") == Money.of("-1.00")
