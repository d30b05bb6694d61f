from .order import (
    AddressIn,
    CustomerIn,
    OrderCreate,
    OrderCreated,
    OrderEventOut,
    OrderExceptionPatch,
    OrderItemIn,
    OrderItemOut,
    OrderOut,
    OrderStatusPatch,
    OrderTotalsIn,
    ShippingOptionIn,
)
from .shipping import (
    ShippingOptionsOut,
    ShippingOptionsRequest,
    VatCalculationOut,
    VatCalculationRequest,
)
from .webhooks import PaymentWebhookIn, WebhookAck

__all__ = [
    "AddressIn",
    "CustomerIn",
    "OrderCreate",
    "OrderCreated",
    "OrderEventOut",
    "OrderExceptionPatch",
    "OrderItemIn",
    "OrderItemOut",
    "OrderOut",
    "OrderStatusPatch",
    "OrderTotalsIn",
    "ShippingOptionIn",
    "ShippingOptionsOut",
    "ShippingOptionsRequest",
    "VatCalculationOut",
    "VatCalculationRequest",
    "PaymentWebhookIn",
    "WebhookAck",
]
