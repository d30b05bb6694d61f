from __future__ import annotations

from decimal import Decimal
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class DestinationIn(BaseModel):
    country: str = Field(pattern=r"^[A-Za-z]{2}$")
    postal_code: str | None = Field(default=None, min_length=3, max_length=10)
    city: str | None = None


class ShippingItemIn(BaseModel):
    product_id: str | None = None
    quantity: StrictInt = Field(gt=0)


class ShippingOptionsRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: DestinationIn
    items: List[ShippingItemIn] = Field(min_length=1)
    total_value: StrictInt = Field(gt=0)


class CharacteristicsOut(BaseModel):
    is_tracked: bool
    requires_signature: bool
    is_express: bool
    insurance: int
    last_mile: str
    restrictions: List[str]


class ShippingOptionOut(BaseModel):
    code: str
    name: str
    carrier_code: str
    carrier_name: str
    price: int
    currency: str
    price_display: str
    delivery_time: str | None
    service_point_required: bool
    characteristics: CharacteristicsOut


class CarrierOut(BaseModel):
    code: str
    name: str
    shipping_options: List[ShippingOptionOut]


class PackageInfoOut(BaseModel):
    total_bottles: int
    estimated_weight: int
    dimensions: dict[str, int]


class ShippingOptionsOut(BaseModel):
    carriers: List[CarrierOut]
    destination: DestinationIn
    package_info: PackageInfoOut
    origin: dict[str, str]


class VatCalculationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: StrictInt = Field(ge=0)
    shipping_amount: StrictInt = Field(default=0, ge=0)
    country: str = Field(pattern=r"^[A-Za-z]{2}$")
    customer_type: Literal["consumer", "business"] = "consumer"
    vat_number: str | None = None


class VatCalculationOut(BaseModel):
    base_amount: int
    shipping_amount: int
    taxable_amount: int
    vat_rate: Decimal
    vat_amount: int
    total_amount: int
    rule_id: str
    is_reverse_charge: bool
    formatted: dict[str, str]
