"""
Test suite for currency module

Tests Decimal conversion, rounding, tolerance comparison and display
formatting. Floats must never leak binary error into amounts.
"""

import pytest
from decimal import Decimal

from lending_engine.currency import (
    Currency, amounts_match, decimal_from_string, format_compact, format_currency,
    non_negative, parse_currency, round_money, to_decimal
)
from lending_engine.errors import InvalidInput


class TestToDecimal:
    """Test numeric conversion"""

    def test_float_goes_through_string(self):
        """Test 0.1 becomes exactly Decimal('0.1')"""
        assert to_decimal(0.1) == Decimal('0.1')

    def test_int_and_string(self):
        """Test ints and numeric strings convert"""
        assert to_decimal(5) == Decimal('5')
        assert to_decimal("12.50") == Decimal('12.50')

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity", float("inf")])
    def test_rejects_non_numbers(self, value):
        """Test booleans, None, garbage and non-finite values are rejected"""
        with pytest.raises(InvalidInput):
            to_decimal(value)

    def test_non_negative(self):
        """Test negatives are rejected with the field name"""
        with pytest.raises(InvalidInput, match="principal"):
            non_negative(-1, "principal")
        assert non_negative(0, "principal") == Decimal('0')


class TestRoundingAndTolerance:
    """Test rounding and amount comparison"""

    def test_round_half_up(self):
        """Test half-cent amounts round up"""
        assert round_money(Decimal('1.005')) == Decimal('1.01')
        assert round_money(Decimal('1.004')) == Decimal('1.00')

    def test_amounts_match(self):
        """Test amounts within a cent match and a full cent does not"""
        assert amounts_match(Decimal('100'), Decimal('100.009'))
        assert not amounts_match(Decimal('100'), Decimal('100.01'))

    def test_custom_tolerance(self):
        """Test the tolerance can be widened"""
        assert amounts_match(Decimal('100'), Decimal('100.4'), Decimal('0.5'))


class TestFormatting:
    """Test display formatting"""

    def test_format_currency(self):
        """Test grouping, symbol and two decimal places"""
        assert format_currency(Decimal('1234.5')) == "$1,234.50"
        assert format_currency(Decimal('-20'), Currency.NGN) == "-₦20.00"

    @pytest.mark.parametrize("amount,expected", [
        (Decimal('1500000'), "$1.5M"),
        (Decimal('2000'), "$2K"),
        (Decimal('999'), "$999"),
        (Decimal('3200000000'), "$3.2B"),
    ])
    def test_format_compact(self, amount, expected):
        """Test compact suffixes"""
        assert format_compact(amount) == expected

    def test_format_compact_negative(self):
        """Test the sign precedes the symbol"""
        assert format_compact(Decimal('-1500'), Currency.GBP) == "-£1.5K"


class TestDecimalFromString:
    """Test parsing user-entered amounts"""

    @pytest.mark.parametrize("text,expected", [
        ("$1,234.56", Decimal('1234.56')),
        ("₦ 50000", Decimal('50000')),
        ("1,5", Decimal('1.5')),
        ("1,500", Decimal('1500')),
        ("-42.10", Decimal('-42.10')),
    ])
    def test_formats(self, text, expected):
        """Test symbols and separators are handled"""
        assert decimal_from_string(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", None])
    def test_invalid(self, text):
        """Test unparseable input raises InvalidInput"""
        with pytest.raises(InvalidInput):
            decimal_from_string(text)


class TestParseCurrency:
    """Test currency resolution"""

    def test_codes(self):
        """Test ISO codes resolve case-insensitively"""
        assert parse_currency("ngn") == Currency.NGN
        assert format_currency(Decimal('5'), "EUR") == "€5.00"

    def test_default_from_config(self):
        """Test None resolves to the configured default currency"""
        assert parse_currency(None) == Currency.USD

    def test_unsupported(self):
        """Test unknown codes raise InvalidInput"""
        with pytest.raises(InvalidInput):
            parse_currency("XYZ")
