from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from loguru import logger

from storefront.core.config import settings
from storefront.domain import tax
from storefront.domain.money import Money

BOTTLE_WEIGHT_GRAMS = 750
MIN_PACKAGING_GRAMS = 200
PACKAGING_PER_BOTTLE_GRAMS = 50
HEAVY_PARCEL_GRAMS = 2000
SIGNED_DELIVERY_THRESHOLD = Money(minor_units=5000)

AGE_VERIFICATION = "age_verification_required"
ORIGIN = {"country": "FR", "postal_code": "21000"}


class LastMile(str, Enum):
    SERVICE_POINT = "service_point"
    HOME_DELIVERY = "home_delivery"


LAST_MILE_ALIASES = {
    "home": LastMile.HOME_DELIVERY,
    "home_delivery": LastMile.HOME_DELIVERY,
    "service_point": LastMile.SERVICE_POINT,
    "pickup": LastMile.SERVICE_POINT,
}


@dataclass(frozen=True, slots=True)
class Characteristics:
    is_tracked: bool
    requires_signature: bool
    is_express: bool
    insurance: Money
    last_mile: LastMile
    restrictions: frozenset[str] = frozenset()

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_tracked": self.is_tracked,
            "requires_signature": self.requires_signature,
            "is_express": self.is_express,
            "insurance": self.insurance.minor_units,
            "last_mile": self.last_mile.value,
            "restrictions": sorted(self.restrictions),
        }


@dataclass(frozen=True, slots=True)
class ShippingOption:
    code: str
    name: str
    carrier_code: str
    carrier_name: str
    price: Money
    characteristics: Characteristics
    delivery_time: str | None = None
    service_point_required: bool = False

    @property
    def currency(self) -> str:
        return self.price.currency

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "carrier_code": self.carrier_code,
            "carrier_name": self.carrier_name,
            "price": self.price.minor_units,
            "currency": self.currency,
            "delivery_time": self.delivery_time,
            "service_point_required": self.service_point_required,
            "characteristics": self.characteristics.as_dict(),
        }


@dataclass(frozen=True, slots=True)
class Carrier:
    code: str
    name: str
    shipping_options: list[ShippingOption] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PackageInfo:
    total_bottles: int
    estimated_weight: int
    dimensions: dict[str, int]


@dataclass(frozen=True, slots=True)
class ShippingQuote:
    carriers: list[Carrier]
    package: PackageInfo
    destination_country: str
    origin: dict[str, str] = field(default_factory=lambda: dict(ORIGIN))


GENERIC_DEFAULTS: dict[str, Any] = {
    "is_tracked": False,
    "requires_signature": False,
    "is_express": False,
    "insurance": 0,
    "last_mile": LastMile.HOME_DELIVERY,
    "restrictions": (),
}

# Carrier-class defaults, keyed by carrier code. Unknown carriers use GENERIC_DEFAULTS.
CARRIER_DEFAULTS: dict[str, dict[str, Any]] = {
    "colissimo": {"is_tracked": True},
    "chronopost": {"is_tracked": True, "is_express": True, "requires_signature": True},
    "dhl": {"is_tracked": True, "is_express": True},
    "ups": {"is_tracked": True, "requires_signature": True},
    "mondial_relay": {"is_tracked": True, "last_mile": LastMile.SERVICE_POINT},
}


def _last_mile(value: Any) -> LastMile:
    if isinstance(value, LastMile):
        return value
    try:
        return LAST_MILE_ALIASES[str(value).lower()]
    except KeyError:
        raise ValueError(f"Unknown last mile '{value}'") from None


def _insurance(value: Any) -> Money:
    if isinstance(value, Money):
        return value
    return Money(minor_units=value)


def fill_characteristics(
    carrier_code: str,
    supplied: Mapping[str, Any] | None = None,
    extra_restrictions: Iterable[str] = (AGE_VERIFICATION,),
) -> Characteristics:
    """Build a complete characteristics set from partial upstream data.

    Missing fields come from the carrier's defaults, then the generic ones.
    """
    merged: dict[str, Any] = dict(GENERIC_DEFAULTS)
    merged.update(CARRIER_DEFAULTS.get((carrier_code or "").lower(), {}))
    for key, value in (supplied or {}).items():
        if key in merged and value is not None:
            merged[key] = value

    restrictions = frozenset(merged["restrictions"]) | frozenset(extra_restrictions)
    return Characteristics(
        is_tracked=bool(merged["is_tracked"]),
        requires_signature=bool(merged["requires_signature"]),
        is_express=bool(merged["is_express"]),
        insurance=_insurance(merged["insurance"]),
        last_mile=_last_mile(merged["last_mile"]),
        restrictions=restrictions,
    )


def package_weight(total_bottles: int) -> int:
    packaging = max(MIN_PACKAGING_GRAMS, total_bottles * PACKAGING_PER_BOTTLE_GRAMS)
    return total_bottles * BOTTLE_WEIGHT_GRAMS + packaging


def package_dimensions(total_bottles: int) -> dict[str, int]:
    if total_bottles <= 6:
        return {"length": 35, "width": 25, "height": 30}
    return {"length": 45, "width": 35, "height": 35}


def _colissimo(code: str, name: str, price: int, delivery_time: str, **characteristics: Any) -> ShippingOption:
    return ShippingOption(
        code=code,
        name=name,
        carrier_code="colissimo",
        carrier_name="Colissimo",
        price=Money(minor_units=price),
        characteristics=fill_characteristics("colissimo", characteristics),
        delivery_time=delivery_time,
    )


def fallback_carriers(country_code: str, total_weight: int, total_value: Money) -> list[Carrier]:
    country = tax.normalize_country(country_code)
    if country == settings.SELLER_COUNTRY:
        options = [
            _colissimo("colissimo-standard", "Colissimo Standard", 690, "2-3 business days"),
        ]
        if SIGNED_DELIVERY_THRESHOLD < total_value:
            options.append(
                _colissimo(
                    "colissimo-signed",
                    "Colissimo Recommandé",
                    890,
                    "2-3 business days",
                    requires_signature=True,
                    insurance=500,
                )
            )
    elif tax.is_eu_country(country):
        price = 1490 if total_weight > HEAVY_PARCEL_GRAMS else 1190
        options = [_colissimo("colissimo-europe", "Colissimo Europe", price, "5-7 business days")]
    else:
        options = [
            _colissimo(
                "colissimo-international",
                "Colissimo International",
                2490,
                "7-14 business days",
                requires_signature=True,
            )
        ]
    return [Carrier(code="colissimo", name="Colissimo", shipping_options=options)]


def shipping_options(
    destination_country: str,
    quantities: Iterable[int],
    total_value: Money,
) -> ShippingQuote:
    total_bottles = sum(quantities)
    weight = package_weight(total_bottles)
    carriers = fallback_carriers(destination_country, weight, total_value)
    logger.info(
        "Built shipping options for country='{country}', bottles={bottles}, weight={weight}g, options={count}",
        country=destination_country,
        bottles=total_bottles,
        weight=weight,
        count=sum(len(c.shipping_options) for c in carriers),
    )
    return ShippingQuote(
        carriers=carriers,
        package=PackageInfo(
            total_bottles=total_bottles,
            estimated_weight=weight,
            dimensions=package_dimensions(total_bottles),
        ),
        destination_country=tax.normalize_country(destination_country),
    )
