from decimal import Decimal

import pytest

from storefront.core.errors import CalculationError, InvalidAmount, UnsupportedJurisdiction
from storefront.domain import shipping, totals
from storefront.domain.money import Money
from storefront.domain.totals import LineItem


def eur(value):
    return Money(minor_units=value)


def colissimo(price):
    return shipping.ShippingOption(
        code="colissimo-expert",
        name="Colissimo Expert",
        carrier_code="colissimo",
        carrier_name="Colissimo",
        price=eur(price),
        characteristics=shipping.fill_characteristics("colissimo"),
    )


class TestCompute:
    def test_france_order_with_taxed_shipping(self):
        items = [
            LineItem(product_id="chablis-2021", quantity=2, unit_price=eur(1250)),
            LineItem(product_id="meursault-2020", quantity=1, unit_price=eur(1800)),
        ]
        result = totals.compute(items, colissimo(950), "FR")

        assert result.subtotal == eur(4300)
        assert result.taxable_base == eur(5250)
        assert result.vat_amount == eur(1050)
        assert result.shipping_cost == eur(950)
        assert result.total == eur(6300)
        assert result.vat_rate == Decimal("0.20")
        assert result.as_minor_units() == {
            "subtotal": 4300,
            "vat_amount": 1050,
            "shipping_cost": 950,
            "total": 6300,
        }

    def test_netherlands_free_shipping_rounds_half_up(self):
        items = [LineItem(product_id="pommard-2019", quantity=3, unit_price=eur(2550))]
        result = totals.compute(items, None, "NL")

        assert result.subtotal == eur(7650)
        assert result.vat_amount == eur(1607)
        assert result.total == eur(9257)

    def test_reverse_charge_excludes_vat(self):
        items = [LineItem(product_id="volnay-2018", quantity=6, unit_price=eur(3200))]
        result = totals.compute(items, colissimo(1490), "BE", "business", "BE0123456789")

        assert result.vat_amount == eur(0)
        assert result.taxable_base == eur(19200)
        assert result.total == eur(19200 + 1490)
        assert result.tax_rule_id == "eu-reverse-charge"

    def test_total_is_sum_of_components(self):
        items = [LineItem(product_id="a", quantity=7, unit_price=eur(1333))]
        result = totals.compute(items, colissimo(1190), "IT")
        assert result.total.minor_units == (
            result.subtotal.minor_units + result.vat_amount.minor_units + result.shipping_cost.minor_units
        )

    def test_subtotal_is_exact_sum_of_lines(self):
        items = [LineItem(product_id=str(i), quantity=i, unit_price=eur(999)) for i in range(1, 11)]
        result = totals.compute(items, None, "DE")
        assert result.subtotal == eur(999 * 55)

    def test_unsupported_destination(self):
        items = [LineItem(product_id="a", quantity=1, unit_price=eur(1000))]
        with pytest.raises(UnsupportedJurisdiction):
            totals.compute(items, None, "US")

    def test_rejects_unnormalized_price(self):
        items = [LineItem(product_id="a", quantity=1, unit_price=12.5)]
        with pytest.raises(CalculationError):
            totals.compute(items, None, "FR")

    @pytest.mark.parametrize("quantity", [0, -1, True])
    def test_rejects_bad_quantity(self, quantity):
        items = [LineItem(product_id="a", quantity=quantity, unit_price=eur(1000))]
        with pytest.raises(InvalidAmount):
            totals.compute(items, None, "FR")


class TestComputeForAmounts:
    def test_vat_preview(self):
        result = totals.compute_for_amounts(eur(10000), eur(690), "FR")
        assert result.taxable_base == eur(10690)
        assert result.vat_amount == eur(2138)
        assert result.total == eur(12828)
