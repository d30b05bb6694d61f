from .base import Base
from .order import Order, ORDER_STATUSES
from .order_item import OrderItem
from .order_event import OrderStatusEvent

__all__ = [
    "Base",
    "Order",
    "ORDER_STATUSES",
    "OrderItem",
    "OrderStatusEvent",
]
