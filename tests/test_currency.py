"""
Test suite for currency module

Tests Money arithmetic, minor-unit conversion and amount parsing.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from bursary.currency import Money, Currency, parse_decimal


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'), Currency.KES)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.KES

        # Rounded half up to the currency precision
        assert Money(Decimal('100.555'), Currency.KES).amount == Decimal('100.56')

        # UGX has no minor unit
        assert Money(Decimal('100.7'), Currency.UGX).amount == Decimal('101')

    def test_non_decimal_amount_is_converted(self):
        """Test that ints and strings are converted to Decimal"""
        assert Money(5, Currency.KES).amount == Decimal('5.00')
        assert Money("12.5", Currency.KES).amount == Decimal('12.50')

    def test_money_arithmetic(self):
        """Test Money arithmetic operations"""
        money1 = Money(Decimal('100.50'), Currency.KES)
        money2 = Money(Decimal('50.25'), Currency.KES)

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (-money1).amount == Decimal('-100.50')
        assert abs(Money(Decimal('-3.10'), Currency.KES)).amount == Decimal('3.10')

    def test_currency_mismatch(self):
        """Test that mixing currencies raises"""
        kes = Money(Decimal('1'), Currency.KES)
        usd = Money(Decimal('1'), Currency.USD)

        with pytest.raises(ValueError, match="Cannot add"):
            kes + usd
        with pytest.raises(ValueError, match="Cannot subtract"):
            kes - usd
        with pytest.raises(ValueError, match="Cannot compare"):
            kes < usd

    def test_comparisons_and_predicates(self):
        small = Money(Decimal('1.00'), Currency.KES)
        large = Money(Decimal('2.00'), Currency.KES)

        assert small < large
        assert large >= small
        assert small == Money(Decimal('1'), Currency.KES)
        assert small != Money(Decimal('1'), Currency.USD)
        assert Money.zero(Currency.KES).is_zero()
        assert small.is_positive()
        assert (-small).is_negative()

    def test_minor_units(self):
        """Test conversion to and from cents"""
        money = Money(Decimal('4000.50'), Currency.KES)
        assert money.to_minor_units() == 400050
        assert Money.from_minor_units(50, Currency.KES).amount == Decimal('0.50')
        assert Money.from_minor_units(50, Currency.UGX).amount == Decimal('50')
        assert Currency.KES.minor_unit == Decimal('0.01')

    def test_oversized_amount_is_a_value_error(self):
        """Amounts beyond the decimal context cannot be rounded to cents"""
        with pytest.raises(ValueError, match="too large"):
            Money(Decimal("9" * 30), Currency.KES)

    def test_to_string(self):
        assert Money(Decimal('5000'), Currency.KES).to_string() == "KES 5,000.00"
        assert Money(Decimal('5000'), Currency.UGX).to_string() == "UGX 5,000"


class TestParseDecimal:
    """Test parsing of user-supplied amounts"""

    def test_plain_values(self):
        assert parse_decimal("100.25") == Decimal('100.25')
        assert parse_decimal(7) == Decimal('7')
        assert parse_decimal(Decimal('3.5')) == Decimal('3.5')
        assert parse_decimal(0.1) == Decimal('0.1')

    def test_formatted_strings(self):
        """Test thousands separators and currency prefixes are stripped"""
        assert parse_decimal("4,000.50") == Decimal('4000.50')
        assert parse_decimal("KES 1200") == Decimal('1200')
        assert parse_decimal(" -15 ") == Decimal('-15')

    def test_exponent_notation_is_kept(self):
        assert parse_decimal("1e5") == Decimal('100000')
        assert parse_decimal("2.5E3") == Decimal('2500')

    @pytest.mark.parametrize("value", ["", "abc", None, True, "1.2.3", [1],
                                       "12abc", "1e", "12 34", "$12", "KES", "NaN"])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            parse_decimal(value)

    def test_non_finite_values(self):
        with pytest.raises(ValueError, match="finite"):
            parse_decimal(float('inf'))
        with pytest.raises(ValueError, match="finite"):
            parse_decimal(Decimal('NaN'))
