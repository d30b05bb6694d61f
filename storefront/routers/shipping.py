from fastapi import APIRouter, Depends
from loguru import logger

from storefront.core.config import settings
from storefront.core.rate_limit import rate_limited
from storefront.domain import shipping, tax, totals
from storefront.domain.money import Money, format_amount, format_rate
from storefront.schemas.shipping import (
    ShippingOptionsOut,
    ShippingOptionsRequest,
    VatCalculationOut,
    VatCalculationRequest,
)

router = APIRouter(tags=["Shipping"])


@router.post(
    "/shipping/options",
    response_model=ShippingOptionsOut,
    dependencies=[Depends(rate_limited("shipping"))],
)
async def shipping_options(payload: ShippingOptionsRequest):
    total_value = Money(minor_units=payload.total_value, currency=settings.CURRENCY)
    quote = shipping.shipping_options(
        payload.destination.country,
        (item.quantity for item in payload.items),
        total_value,
    )

    carriers = []
    for carrier in quote.carriers:
        options = []
        for option in carrier.shipping_options:
            data = option.as_dict()
            data["price_display"] = format_amount(option.price)
            options.append(data)
        carriers.append({"code": carrier.code, "name": carrier.name, "shipping_options": options})

    destination = payload.destination.model_dump()
    destination["country"] = quote.destination_country
    return {
        "carriers": carriers,
        "destination": destination,
        "package_info": {
            "total_bottles": quote.package.total_bottles,
            "estimated_weight": quote.package.estimated_weight,
            "dimensions": quote.package.dimensions,
        },
        "origin": quote.origin,
    }


@router.post("/vat/calculate", response_model=VatCalculationOut)
async def calculate_vat(payload: VatCalculationRequest):
    result = totals.compute_for_amounts(
        Money(minor_units=payload.amount, currency=settings.CURRENCY),
        Money(minor_units=payload.shipping_amount, currency=settings.CURRENCY),
        payload.country,
        payload.customer_type,
        payload.vat_number,
    )
    logger.info(
        "VAT preview for country='{country}': rule={rule}, vat={vat}",
        country=payload.country,
        rule=result.tax_rule_id,
        vat=result.vat_amount.minor_units,
    )
    return VatCalculationOut(
        base_amount=result.subtotal.minor_units,
        shipping_amount=result.shipping_cost.minor_units,
        taxable_amount=result.taxable_base.minor_units,
        vat_rate=result.vat_rate,
        vat_amount=result.vat_amount.minor_units,
        total_amount=result.total.minor_units,
        rule_id=result.tax_rule_id,
        is_reverse_charge=result.tax_rule_id == tax.REVERSE_CHARGE_RULE,
        formatted={
            "base_amount": format_amount(result.subtotal),
            "vat_rate": format_rate(result.vat_rate),
            "vat_amount": format_amount(result.vat_amount),
            "total_amount": format_amount(result.total),
        },
    )
