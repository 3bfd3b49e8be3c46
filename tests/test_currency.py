"""
Test suite for currency module

Tests Money class and proper Decimal handling.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from core_ledger.currency import (
    MAX_PRECISION, Money, Currency, fits_precision, quantize, to_decimal, to_number
)


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and validation"""
        money = Money(Decimal('100.50'), Currency.NGN)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.NGN

        # Test automatic rounding to currency precision
        money_rounded = Money(Decimal('100.555'), Currency.NGN)
        assert money_rounded.amount == Decimal('100.56')

        # Test JPY (0 decimal places)
        money_jpy = Money(Decimal('100.7'), Currency.JPY)
        assert money_jpy.amount == Decimal('101')

    def test_money_from_strings_and_numbers(self):
        """Persisted strings and inbound numbers convert without float drift"""
        assert Money("250.10", Currency.NGN).amount == Decimal('250.10')
        assert Money(7, Currency.NGN).amount == Decimal('7.00')
        assert Money(0.1, Currency.NGN).amount == Decimal('0.10')

    def test_money_arithmetic(self):
        """Test Money arithmetic operations"""
        money1 = Money(Decimal('100.50'), Currency.USD)
        money2 = Money(Decimal('50.25'), Currency.USD)

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (-money1).amount == Decimal('-100.50')

    def test_decimal_sums_are_exact(self):
        """0.1 + 0.2 is exactly 0.3 with Decimal"""
        total = Money.zero(Currency.NGN)
        for _ in range(10):
            total = total + Money(Decimal('0.1'), Currency.NGN)
        assert total.amount == Decimal('1.00')
        assert (Money("0.1", Currency.NGN) + Money("0.2", Currency.NGN)).amount == Decimal('0.3')

    def test_currency_mismatch(self):
        """Arithmetic across currencies is refused"""
        with pytest.raises(ValueError, match="Currency mismatch"):
            Money(Decimal('1'), Currency.USD) + Money(Decimal('1'), Currency.NGN)

        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.USD) < Money(Decimal('1'), Currency.NGN)

    def test_comparisons(self):
        small = Money(Decimal('10'), Currency.NGN)
        large = Money(Decimal('20'), Currency.NGN)
        assert small < large
        assert large >= small
        assert small == Money(Decimal('10.00'), Currency.NGN)
        assert small != Money(Decimal('10.00'), Currency.USD)

    def test_sign_predicates(self):
        assert Money.zero(Currency.NGN).is_zero()
        assert Money(Decimal('0.01'), Currency.NGN).is_positive()
        assert Money(Decimal('-0.01'), Currency.NGN).is_negative()

    def test_to_string(self):
        assert Money(Decimal('1234.5'), Currency.NGN).to_string() == "NGN 1,234.50"
        assert Money(Decimal('1234'), Currency.JPY).to_string() == "JPY 1,234"


class TestCurrency:

    def test_from_code(self):
        assert Currency.from_code("ngn") == Currency.NGN
        assert Currency.from_code("USD").precision == 2

    def test_unknown_code(self):
        with pytest.raises(ValueError, match="Unsupported currency"):
            Currency.from_code("XYZ")


class TestConversions:
    """Boundary conversions to and from Decimal"""

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_decimal("abc")
        with pytest.raises(ValueError):
            to_decimal("NaN")
        with pytest.raises(ValueError):
            to_decimal(float("inf"))

    def test_quantize(self):
        assert quantize(Decimal('2.345'), Currency.NGN) == Decimal('2.35')
        assert quantize(Decimal('2.5'), Currency.JPY) == Decimal('3')

    def test_quantize_out_of_range(self):
        with pytest.raises(ValueError, match="exceeds the supported precision"):
            quantize(Decimal('1e30'), Currency.NGN)
        with pytest.raises(ValueError):
            Money(Decimal('1e30'), Currency.NGN)

    def test_fits_precision(self):
        assert fits_precision(Decimal('100.50'), 2)
        assert fits_precision(Decimal('100.500'), 2)
        assert fits_precision(Decimal('1E+3'), 0)
        assert not fits_precision(Decimal('100.505'), 2)
        assert not fits_precision(Decimal('0.5'), Currency.JPY.precision)
        assert MAX_PRECISION == 2


    def test_to_number(self):
        """Integral values become int, the rest float"""
        assert to_number(Decimal('500.00')) == 500
        assert isinstance(to_number(Decimal('500.00')), int)
        assert to_number(Decimal('100.50')) == 100.5
        assert to_number(Money(Decimal('0.10'), Currency.NGN)) == 0.1
        assert str(to_number(Decimal('12345678.91'))) == "12345678.91"
