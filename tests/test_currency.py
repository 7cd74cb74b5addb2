"""
Test suite for currency module

Tests Money arithmetic and rounding. Financial math must never touch float.
"""

import pytest
from decimal import Decimal

from gold_lending.currency import Money, Currency, DEFAULT_CURRENCY, to_decimal


class TestCurrency:

    def test_rupee_precision(self):
        assert Currency.INR.code == "INR"
        assert Currency.INR.precision == 2
        assert Currency.INR.minor_unit == Decimal('0.01')
        assert DEFAULT_CURRENCY == Currency.INR


class TestMoney:
    """Test Money value object"""

    def test_rounds_half_up_to_paise(self):
        assert Money(Decimal('10.005')).amount == Decimal('10.01')
        assert Money(Decimal('10.004')).amount == Decimal('10.00')
        assert Money(Decimal('-10.005')).amount == Decimal('-10.01')

    def test_accepts_strings_and_ints(self):
        assert Money("1066.19").amount == Decimal('1066.19')
        assert Money(100).amount == Decimal('100.00')

    def test_float_goes_through_string(self):
        assert Money(0.1).amount == Decimal('0.10')

    def test_too_large_amount_raises_value_error(self):
        """Amounts that cannot be held to paise raise ValueError"""
        with pytest.raises(ValueError):
            Money(Decimal('1E+27'))
        with pytest.raises(ValueError):
            Money("1e30")

    def test_arithmetic(self):
        a = Money(Decimal('1066.19'))
        b = Money(Decimal('533.10'))
        assert (a + b).amount == Decimal('1599.29')
        assert (a - b).amount == Decimal('533.09')
        assert (a * 11).amount == Decimal('11728.09')
        assert (-a).amount == Decimal('-1066.19')

    def test_comparisons(self):
        small = Money(Decimal('1'))
        large = Money(Decimal('2'))
        assert small < large
        assert large >= small
        assert min(small, large) == small
        assert Money.zero().is_zero()
        assert large.is_positive()
        assert (small - large).is_negative()

    def test_equality_and_hash(self):
        assert Money(Decimal('5')) == Money(Decimal('5.00'))
        assert hash(Money(Decimal('5'))) == hash(Money(Decimal('5.00')))
        assert Money(Decimal('5')) != Decimal('5')

    def test_immutable(self):
        money = Money(Decimal('5'))
        with pytest.raises(AttributeError):
            money.amount = Decimal('6')

    def test_display(self):
        assert Money(Decimal('12794.23')).to_string() == "INR 12,794.23"


class TestToDecimal:

    @pytest.mark.parametrize("value", ["abc", None, True, "Infinity", "NaN", object()])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_strips_whitespace(self):
        assert to_decimal(" 12.5 ") == Decimal('12.5')
