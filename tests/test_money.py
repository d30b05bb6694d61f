from decimal import Decimal

import pytest

from storefront.core.errors import CalculationError, InvalidAmount, UnsupportedCurrency
from storefront.domain.money import (
    Money,
    format_amount,
    format_rate,
    sum_money,
    to_major_units,
    to_minor_units,
)


class TestMoney:
    def test_requires_integer_minor_units(self):
        with pytest.raises(CalculationError):
            Money(minor_units=12.5)
        with pytest.raises(CalculationError):
            Money(minor_units=True)

    def test_rejects_negative_amount(self):
        with pytest.raises(InvalidAmount):
            Money(minor_units=-1)

    def test_rejects_unknown_currency(self):
        with pytest.raises(UnsupportedCurrency):
            Money(minor_units=100, currency="XYZ")

    def test_unit_tag_is_required_keyword(self):
        with pytest.raises(TypeError):
            Money(100)

    def test_addition_and_quantity(self):
        price = Money(minor_units=1250)
        assert price * 2 + Money(minor_units=1800) == Money(minor_units=4300)
        assert 3 * price == Money(minor_units=3750)

    def test_cannot_add_plain_int(self):
        with pytest.raises(CalculationError):
            Money(minor_units=100) + 5

    def test_cannot_multiply_by_fraction(self):
        with pytest.raises(CalculationError):
            Money(minor_units=100) * 1.5

    def test_apply_rate_rounds_half_up(self):
        assert Money(minor_units=7650).apply_rate(Decimal("0.21")) == Money(minor_units=1607)
        assert Money(minor_units=5250).apply_rate(Decimal("0.20")) == Money(minor_units=1050)
        assert Money(minor_units=5).apply_rate(Decimal("0.5")) == Money(minor_units=3)

    def test_apply_rate_requires_decimal(self):
        with pytest.raises(CalculationError):
            Money(minor_units=100).apply_rate(0.2)

    def test_sum_money_empty_is_zero(self):
        assert sum_money([]) == Money.zero()


class TestConversions:
    @pytest.mark.parametrize(
        "value, expected",
        [("12.50", 1250), ("12.5", 1250), (12, 1200), (12.5, 1250), (Decimal("0.10"), 10), ("0", 0)],
    )
    def test_to_minor_units(self, value, expected):
        assert to_minor_units(value).minor_units == expected

    def test_float_uses_shortest_repr(self):
        assert to_minor_units(19.99).minor_units == 1999

    def test_float_noise_is_not_rounded_away(self):
        with pytest.raises(InvalidAmount):
            to_minor_units(0.1 + 0.2)

    @pytest.mark.parametrize("value", ["12.505", "abc", "", "NaN", "-1.00", True])
    def test_to_minor_units_rejects(self, value):
        with pytest.raises(InvalidAmount):
            to_minor_units(value)

    def test_to_major_units(self):
        assert to_major_units(Money(minor_units=6300)) == "63.00"
        assert to_major_units(Money(minor_units=5)) == "0.05"

    def test_formatting(self):
        assert format_amount(Money(minor_units=1250)) == "€12.50"
        assert format_rate(Decimal("0.21")) == "21%"
        assert format_rate(Decimal("0")) == "0%"
