from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, StrictInt

from storefront.domain.state_machine import OrderStatus

PHONE_PATTERN = r"^(\+\d{1,3}[- ]?)?\d{8,15}$"


class AddressIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)
    company: str | None = Field(default=None, max_length=100)
    address_line1: str = Field(min_length=5, max_length=255)
    address_line2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=2, max_length=100)
    postal_code: str = Field(min_length=3, max_length=10)
    country: str = Field(pattern=r"^[A-Za-z]{2}$")
    phone: str | None = Field(default=None, pattern=PHONE_PATTERN)


class CustomerIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: EmailStr
    first_name: str = Field(min_length=2, max_length=100)
    last_name: str = Field(min_length=2, max_length=100)
    phone: str | None = Field(default=None, pattern=PHONE_PATTERN)
    customer_type: Literal["consumer", "business"] = "consumer"
    vat_number: str | None = Field(default=None, max_length=32)


class OrderItemIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$")
    quantity: StrictInt = Field(gt=0)
    unit_price: StrictInt | None = Field(default=None, gt=0)
    requires_shipping: StrictBool = True


class CharacteristicsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_tracked: StrictBool | None = None
    requires_signature: StrictBool | None = None
    is_express: StrictBool | None = None
    insurance: StrictInt | None = Field(default=None, ge=0)
    last_mile: Literal["service_point", "home_delivery", "home"] | None = None
    restrictions: List[str] | None = None


class ShippingOptionIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    carrier_code: str | None = Field(default=None, max_length=64)
    carrier_name: str | None = Field(default=None, max_length=255)
    price: StrictInt | None = Field(default=None, ge=0)
    delivery_time: str | None = None
    service_point_required: StrictBool = False
    characteristics: CharacteristicsIn | None = None


class OrderTotalsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subtotal: StrictInt = Field(ge=0)
    vat_amount: StrictInt = Field(ge=0)
    shipping_cost: StrictInt = Field(ge=0)
    total: StrictInt = Field(ge=1)


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    customer: CustomerIn
    shipping_address: AddressIn
    billing_address: AddressIn | None = None
    items: List[OrderItemIn] = Field(min_length=1)
    shipping_option: ShippingOptionIn | None = None
    totals: OrderTotalsIn
    payment_method: str | None = Field(default=None, max_length=32)
    special_instructions: str | None = Field(default=None, max_length=500)
    gift_message: str | None = Field(default=None, max_length=200)


class OrderStatusPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: OrderStatus
    note: str | None = Field(default=None, max_length=500)


class OrderExceptionPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    active: bool
    note: str | None = Field(default=None, max_length=500)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: str
    quantity: int
    unit_price: int
    line_total: int


class OrderEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: str | None
    to_status: str
    actor: str
    provider_status: str | None
    note: str | None
    created_at: datetime | None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID | None
    status: str
    customer_email: str
    customer_first_name: str
    customer_last_name: str
    customer_type: str
    shipping_address: dict
    billing_address: dict
    currency: str
    subtotal: int
    vat_amount: int
    vat_rate: Decimal
    shipping_cost: int
    total: int
    shipping_option: dict | None
    payment_id: str | None
    payment_status: str | None
    tracking_number: str | None
    tracking_url: str | None
    carrier: str | None
    carrier_status: str | None
    has_exception: bool
    fulfillment_notes: str | None
    created_at: datetime | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    items: List[OrderItemOut]


class OrderCreated(OrderOut):
    payment_url: str | None = None
