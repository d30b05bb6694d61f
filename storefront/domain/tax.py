"""VAT rate resolution for EU destinations.

Rates and rules are plain data. ``resolve`` only looks them up, so adding a
country or a rule never touches the calculator.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from storefront.core.config import settings
from storefront.core.errors import UnsupportedJurisdiction


class CustomerType(str, Enum):
    CONSUMER = "consumer"
    BUSINESS = "business"


@dataclass(frozen=True, slots=True)
class TaxRule:
    rule_id: str
    description: str
    shipping_taxable: bool


@dataclass(frozen=True, slots=True)
class TaxRate:
    country_code: str
    customer_type: CustomerType
    rate: Decimal
    rule_id: str

    @property
    def rule(self) -> TaxRule:
        return TAX_RULES[self.rule_id]

    @property
    def shipping_taxable(self) -> bool:
        return self.rule.shipping_taxable


STANDARD_RULE = "eu-standard"
REVERSE_CHARGE_RULE = "eu-reverse-charge"

TAX_RULES: dict[str, TaxRule] = {
    STANDARD_RULE: TaxRule(
        rule_id=STANDARD_RULE,
        description="Destination standard rate applied to goods and delivery",
        shipping_taxable=True,
    ),
    REVERSE_CHARGE_RULE: TaxRule(
        rule_id=REVERSE_CHARGE_RULE,
        description="Intra-EU B2B supply, VAT accounted for by the customer",
        shipping_taxable=False,
    ),
}

EU_VAT_RATES: dict[str, Decimal] = {
    "AT": Decimal("0.20"),
    "BE": Decimal("0.21"),
    "BG": Decimal("0.20"),
    "HR": Decimal("0.25"),
    "CY": Decimal("0.19"),
    "CZ": Decimal("0.21"),
    "DK": Decimal("0.25"),
    "EE": Decimal("0.20"),
    "FI": Decimal("0.24"),
    "FR": Decimal("0.20"),
    "DE": Decimal("0.19"),
    "GR": Decimal("0.24"),
    "HU": Decimal("0.27"),
    "IE": Decimal("0.23"),
    "IT": Decimal("0.22"),
    "LV": Decimal("0.21"),
    "LT": Decimal("0.21"),
    "LU": Decimal("0.17"),
    "MT": Decimal("0.18"),
    "NL": Decimal("0.21"),
    "PL": Decimal("0.23"),
    "PT": Decimal("0.23"),
    "RO": Decimal("0.19"),
    "SK": Decimal("0.20"),
    "SI": Decimal("0.22"),
    "ES": Decimal("0.21"),
    "SE": Decimal("0.25"),
}

VAT_NUMBER_PATTERN = re.compile(r"^[A-Z]{2}[A-Z0-9]{2,12}$")


def normalize_country(country_code: str) -> str:
    return (country_code or "").strip().upper()


def is_eu_country(country_code: str) -> bool:
    return normalize_country(country_code) in EU_VAT_RATES


def is_valid_vat_number(vat_number: str | None) -> bool:
    if not vat_number:
        return False
    cleaned = re.sub(r"\s+", "", vat_number).upper()
    return bool(VAT_NUMBER_PATTERN.match(cleaned))


def all_rates() -> dict[str, Decimal]:
    return dict(EU_VAT_RATES)


def resolve(
    country_code: str,
    customer_type: CustomerType | str = CustomerType.CONSUMER,
    business_vat_number: str | None = None,
) -> TaxRate:
    country = normalize_country(country_code)
    customer_type = CustomerType(customer_type)

    if country not in EU_VAT_RATES:
        raise UnsupportedJurisdiction(country)

    if (
        customer_type is CustomerType.BUSINESS
        and country != settings.SELLER_COUNTRY
        and is_valid_vat_number(business_vat_number)
    ):
        return TaxRate(
            country_code=country,
            customer_type=customer_type,
            rate=Decimal("0"),
            rule_id=REVERSE_CHARGE_RULE,
        )

    return TaxRate(
        country_code=country,
        customer_type=customer_type,
        rate=EU_VAT_RATES[country],
        rule_id=STANDARD_RULE,
    )
