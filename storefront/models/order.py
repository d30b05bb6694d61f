import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, List

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from storefront.models.base import Base, created_ts, uuidpk

ORDER_STATUSES = (
    "pending",
    "payment_failed",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "status IN ('" + "', '".join(ORDER_STATUSES) + "')",
            name="ck_orders_status",
        ),
        CheckConstraint("subtotal >= 0 AND vat_amount >= 0 AND shipping_cost >= 0", name="ck_orders_amounts"),
        CheckConstraint(
            "abs(total - (subtotal + vat_amount + shipping_cost)) <= 1",
            name="ck_orders_total_matches",
        ),
    )

    id: Mapped[uuidpk]
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False, index=True)

    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_type: Mapped[str] = mapped_column(String(16), default="consumer", nullable=False)
    business_vat_number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    billing_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    tax_rule_id: Mapped[str] = mapped_column(String(32), nullable=False)
    shipping_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[int] = mapped_column(Integer, nullable=False)

    shipping_option: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payment_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(32), nullable=True)

    parcel_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(64), nullable=True)
    carrier_status: Mapped[str | None] = mapped_column(String(255), nullable=True)

    has_exception: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fulfillment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    gift_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[created_ts]
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    events: Mapped[List["OrderStatusEvent"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusEvent.id",
    )
