from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from storefront.clients.catalog import CatalogClient, CatalogProduct
from storefront.core.config import settings
from storefront.core.errors import TotalsMismatch, ValidationErrors
from storefront.core.metrics import ORDER_VALIDATION_TOTAL
from storefront.domain import shipping, tax, totals
from storefront.domain.money import Money
from storefront.domain.shipping import ShippingOption
from storefront.domain.totals import LineItem, OrderTotals
from storefront.schemas.order import OrderCreate, ShippingOptionIn

TOTAL_FIELDS = ("subtotal", "vat_amount", "shipping_cost", "total")


@dataclass(frozen=True, slots=True)
class ValidatedOrder:
    request: OrderCreate
    line_items: list[LineItem]
    shipping_option: ShippingOption | None
    totals: OrderTotals
    destination_country: str
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]

    @property
    def customer_type(self) -> str:
        return self.request.customer.customer_type


def field_errors(exc: PydanticValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"]) or "body"
        errors.setdefault(path, []).append(err["msg"])
    return errors


def _fail(errors: dict[str, list[str]], result: str) -> ValidationErrors:
    ORDER_VALIDATION_TOTAL.labels(service=settings.SERVICE_NAME, result=result).inc()
    logger.warning(
        "Order request rejected: {count} invalid field(s): {fields}",
        count=len(errors),
        fields=sorted(errors),
    )
    return ValidationErrors(errors)


def _price_line_items(
    request: OrderCreate,
    products: Mapping[str, CatalogProduct],
    errors: dict[str, list[str]],
) -> list[LineItem]:
    line_items = []
    for index, item in enumerate(request.items):
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            errors.setdefault(f"items.{index}.product_id", []).append(
                f"Product '{item.product_id}' is not available"
            )
            continue
        if product.stock_quantity is not None and product.stock_quantity < item.quantity:
            errors.setdefault(f"items.{index}.quantity", []).append(
                f"Only {product.stock_quantity} bottle(s) of '{item.product_id}' in stock"
            )
        if item.unit_price is not None and item.unit_price != product.price.minor_units:
            errors.setdefault(f"items.{index}.unit_price", []).append(
                f"Price changed to {product.price.minor_units}"
            )
        line_items.append(
            LineItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=product.price,
                requires_shipping=item.requires_shipping,
            )
        )
    return line_items


def _resolve_shipping_option(
    raw: ShippingOptionIn,
    country: str,
    items: list[LineItem],
    errors: dict[str, list[str]],
) -> ShippingOption | None:
    """Match the requested option against the server's own quote.

    Only the server price is ever used; a client price that disagrees is rejected.
    """
    goods_value = sum((item.line_total for item in items), Money.zero())
    quote = shipping.shipping_options(country, (item.quantity for item in items), goods_value)
    for carrier in quote.carriers:
        for option in carrier.shipping_options:
            if option.code != raw.code:
                continue
            if raw.price is not None and raw.price != option.price.minor_units:
                errors.setdefault("shipping_option.price", []).append(
                    f"Price for '{raw.code}' is {option.price.minor_units}"
                )
            return option

    errors.setdefault("shipping_option.code", []).append(
        f"Shipping option '{raw.code}' is not available for {country}"
    )
    return None


def parse_request(raw: Any) -> OrderCreate:
    if not isinstance(raw, Mapping):
        raise _fail({"body": ["Request body must be a JSON object"]}, "malformed")

    try:
        return OrderCreate.model_validate(raw)
    except PydanticValidationError as exc:
        raise _fail(field_errors(exc), "invalid_fields") from exc


def check_order(request: OrderCreate, products: Mapping[str, CatalogProduct]) -> ValidatedOrder:
    """Reprice a parsed order from catalog data and cross-check the client's totals."""
    errors: dict[str, list[str]] = {}
    customer = request.customer
    if customer.vat_number and not tax.is_valid_vat_number(customer.vat_number):
        errors.setdefault("customer.vat_number", []).append("Invalid VAT number format")

    line_items = _price_line_items(request, products, errors)

    country = tax.normalize_country(request.shipping_address.country)
    shipping_option: ShippingOption | None = None
    if request.shipping_option is None:
        if any(item.requires_shipping for item in request.items):
            errors.setdefault("shipping_option", []).append("Shipping option is required")
    elif len(line_items) == len(request.items):
        shipping_option = _resolve_shipping_option(request.shipping_option, country, line_items, errors)

    if errors:
        raise _fail(errors, "invalid_fields")

    calculated = totals.compute(
        line_items,
        shipping_option,
        country,
        customer.customer_type,
        customer.vat_number,
        currency=settings.CURRENCY,
    )

    provided = request.totals.model_dump()
    expected = calculated.as_minor_units()
    tolerance = settings.TOTALS_TOLERANCE_MINOR_UNITS
    mismatched = [name for name in TOTAL_FIELDS if abs(expected[name] - provided[name]) > tolerance]
    if mismatched:
        ORDER_VALIDATION_TOTAL.labels(service=settings.SERVICE_NAME, result="totals_mismatch").inc()
        logger.warning(
            "Order totals mismatch on {fields}: calculated={calculated}, provided={provided}",
            fields=mismatched,
            calculated=expected,
            provided=provided,
        )
        raise TotalsMismatch(calculated=expected, provided=provided)

    shipping_address = request.shipping_address.model_dump()
    shipping_address["country"] = country
    if request.billing_address is not None:
        billing_address = request.billing_address.model_dump()
        billing_address["country"] = tax.normalize_country(billing_address["country"])
    else:
        billing_address = dict(shipping_address)

    ORDER_VALIDATION_TOTAL.labels(service=settings.SERVICE_NAME, result="valid").inc()
    return ValidatedOrder(
        request=request,
        line_items=line_items,
        shipping_option=shipping_option,
        totals=calculated,
        destination_country=country,
        shipping_address=shipping_address,
        billing_address=billing_address,
    )


def validate(raw: Any, products: Mapping[str, CatalogProduct]) -> ValidatedOrder:
    return check_order(parse_request(raw), products)


async def validate_order(raw: Any, catalog: CatalogClient) -> ValidatedOrder:
    request = parse_request(raw)
    products = await catalog.get_products(item.product_id for item in request.items)
    return check_order(request, products)
