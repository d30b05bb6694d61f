import pytest

from storefront.domain import shipping
from storefront.domain.money import Money
from storefront.domain.shipping import AGE_VERIFICATION, LastMile


def all_options(quote):
    return [option for carrier in quote.carriers for option in carrier.shipping_options]


class TestPackage:
    @pytest.mark.parametrize("bottles, expected", [(1, 950), (3, 2450), (6, 4800), (12, 9600)])
    def test_weight_includes_packaging(self, bottles, expected):
        assert shipping.package_weight(bottles) == expected

    def test_dimensions_grow_past_six_bottles(self):
        assert shipping.package_dimensions(6) == {"length": 35, "width": 25, "height": 30}
        assert shipping.package_dimensions(7) == {"length": 45, "width": 35, "height": 35}


class TestFallbackOptions:
    def test_france_small_order_has_standard_only(self):
        quote = shipping.shipping_options("FR", [2], Money(minor_units=3000))
        options = all_options(quote)
        assert [o.code for o in options] == ["colissimo-standard"]
        assert options[0].price == Money(minor_units=690)

    def test_france_large_order_adds_signed_delivery(self):
        quote = shipping.shipping_options("fr", [6], Money(minor_units=12000))
        signed = {o.code: o for o in all_options(quote)}["colissimo-signed"]
        assert signed.price == Money(minor_units=890)
        assert signed.characteristics.requires_signature is True
        assert signed.characteristics.insurance == Money(minor_units=500)

    def test_eu_price_depends_on_weight(self):
        light = all_options(shipping.shipping_options("DE", [1], Money(minor_units=2000)))
        heavy = all_options(shipping.shipping_options("DE", [3], Money(minor_units=6000)))
        assert light[0].price == Money(minor_units=1190)
        assert heavy[0].price == Money(minor_units=1490)

    def test_international_requires_signature(self):
        options = all_options(shipping.shipping_options("CH", [1], Money(minor_units=2000)))
        assert options[0].price == Money(minor_units=2490)
        assert options[0].characteristics.requires_signature is True

    def test_every_option_is_fully_characterized(self):
        for country in ("FR", "BE", "US"):
            for option in all_options(shipping.shipping_options(country, [4], Money(minor_units=9000))):
                data = option.as_dict()["characteristics"]
                assert set(data) == {
                    "is_tracked",
                    "requires_signature",
                    "is_express",
                    "insurance",
                    "last_mile",
                    "restrictions",
                }
                assert AGE_VERIFICATION in data["restrictions"]

    def test_quote_carries_package_and_origin(self):
        quote = shipping.shipping_options("FR", [2, 1], Money(minor_units=4300))
        assert quote.package.total_bottles == 3
        assert quote.package.estimated_weight == 2450
        assert quote.origin == {"country": "FR", "postal_code": "21000"}


class TestFillCharacteristics:
    def test_carrier_defaults_then_supplied_values(self):
        filled = shipping.fill_characteristics("chronopost", {"requires_signature": False})
        assert filled.is_express is True
        assert filled.is_tracked is True
        assert filled.requires_signature is False

    def test_unknown_carrier_uses_generic_defaults(self):
        filled = shipping.fill_characteristics("local-courier")
        assert filled.is_tracked is False
        assert filled.last_mile is LastMile.HOME_DELIVERY
        assert filled.insurance == Money(minor_units=0)
        assert AGE_VERIFICATION in filled.restrictions

    def test_service_point_alias(self):
        filled = shipping.fill_characteristics("dhl", {"last_mile": "pickup"})
        assert filled.last_mile is LastMile.SERVICE_POINT

    def test_relay_carrier_defaults_to_service_point(self):
        filled = shipping.fill_characteristics("mondial_relay")
        assert filled.last_mile is LastMile.SERVICE_POINT
        assert AGE_VERIFICATION in filled.restrictions
