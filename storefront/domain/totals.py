"""Order total calculation over minor-unit Money values."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from loguru import logger

from storefront.core.errors import CalculationError, InvalidAmount
from storefront.domain import tax
from storefront.domain.money import Money, sum_money
from storefront.domain.shipping import ShippingOption


@dataclass(frozen=True, slots=True)
class LineItem:
    product_id: str
    quantity: int
    unit_price: Money
    requires_shipping: bool = True

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class OrderTotals:
    subtotal: Money
    vat_amount: Money
    vat_rate: Decimal
    shipping_cost: Money
    total: Money
    taxable_base: Money
    tax_rule_id: str

    def as_minor_units(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal.minor_units,
            "vat_amount": self.vat_amount.minor_units,
            "shipping_cost": self.shipping_cost.minor_units,
            "total": self.total.minor_units,
        }


def _check_line_item(item: Any, currency: str) -> LineItem:
    if not isinstance(item, LineItem):
        raise CalculationError("Line items must be LineItem values", details={"item": repr(item)})
    if not isinstance(item.unit_price, Money):
        raise CalculationError(
            "Unit price must be a normalized Money value",
            details={"product_id": item.product_id, "unit_price": repr(item.unit_price)},
        )
    if item.unit_price.currency != currency:
        raise CalculationError(
            "Line item currency differs from order currency",
            details={"product_id": item.product_id, "currency": item.unit_price.currency},
        )
    if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
        raise InvalidAmount(
            "Quantity must be a positive integer",
            details={"product_id": item.product_id, "quantity": repr(item.quantity)},
        )
    return item


def compute(
    line_items: Sequence[LineItem],
    shipping_option: ShippingOption | None,
    destination: str,
    customer_type: tax.CustomerType | str = tax.CustomerType.CONSUMER,
    business_vat_number: str | None = None,
    currency: str = "EUR",
) -> OrderTotals:
    tax_rate = tax.resolve(destination, customer_type, business_vat_number)

    items = [_check_line_item(item, currency) for item in line_items]
    subtotal = sum_money((item.line_total for item in items), currency)

    if shipping_option is None:
        shipping_cost = Money.zero(currency)
    else:
        shipping_cost = shipping_option.price
        if not isinstance(shipping_cost, Money):
            raise CalculationError(
                "Shipping price must be a normalized Money value",
                details={"code": shipping_option.code, "price": repr(shipping_cost)},
            )
        if shipping_cost.currency != currency:
            raise CalculationError(
                "Shipping currency differs from order currency",
                details={"code": shipping_option.code, "currency": shipping_cost.currency},
            )

    return _apply_tax(subtotal, shipping_cost, tax_rate)


def compute_for_amounts(
    subtotal: Money,
    shipping_cost: Money,
    destination: str,
    customer_type: tax.CustomerType | str = tax.CustomerType.CONSUMER,
    business_vat_number: str | None = None,
) -> OrderTotals:
    """Tax an already summed goods amount plus shipping. Used by the VAT preview."""
    tax_rate = tax.resolve(destination, customer_type, business_vat_number)
    for value in (subtotal, shipping_cost):
        if not isinstance(value, Money):
            raise CalculationError("Amounts must be normalized Money values", details={"value": repr(value)})
    return _apply_tax(subtotal, shipping_cost, tax_rate)


def _apply_tax(subtotal: Money, shipping_cost: Money, tax_rate: tax.TaxRate) -> OrderTotals:
    taxable_base = subtotal + shipping_cost if tax_rate.shipping_taxable else subtotal
    vat_amount = taxable_base.apply_rate(tax_rate.rate)
    total = subtotal + vat_amount + shipping_cost

    logger.debug(
        "Computed totals for destination='{destination}' rule='{rule}': "
        "subtotal={subtotal}, vat={vat}, shipping={shipping}, total={total}",
        destination=tax_rate.country_code,
        rule=tax_rate.rule_id,
        subtotal=subtotal.minor_units,
        vat=vat_amount.minor_units,
        shipping=shipping_cost.minor_units,
        total=total.minor_units,
    )

    return OrderTotals(
        subtotal=subtotal,
        vat_amount=vat_amount,
        vat_rate=tax_rate.rate,
        shipping_cost=shipping_cost,
        total=total,
        taxable_base=taxable_base,
        tax_rule_id=tax_rate.rule_id,
    )
