from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.config import settings
from storefront.core.errors import InvalidTransition, NotFound, StorefrontError
from storefront.core.metrics import (
    ORDER_TOTAL_MINOR_UNITS,
    ORDER_TRANSITIONS_TOTAL,
    ORDERS_SERVICE_OPERATIONS_TOTAL,
)
from storefront.domain.state_machine import (
    Decision,
    OrderStatus,
    TERMINAL_STATES,
    TransitionPlan,
    can_flag_exception,
    plan_transition,
)
from storefront.models.order import Order
from storefront.models.order_event import OrderStatusEvent
from storefront.models.order_item import OrderItem
from storefront.service.validator import ValidatedOrder

MAX_ORDER_NUMBER_ATTEMPTS = 100
MAX_TRANSITION_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    order: Order
    plan: TransitionPlan

    @property
    def applied(self) -> bool:
        return self.plan.should_apply


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _count(operation: str, status: str) -> None:
    ORDERS_SERVICE_OPERATIONS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        operation=operation,
        status=status,
    ).inc()


def generate_order_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    now = now or _now()
    rng = rng or random
    return f"DV-{now:%Y%m%d}-{rng.randint(0, 9999):04d}"


async def _order_number_taken(session: AsyncSession, order_number: str) -> bool:
    res = await session.execute(select(Order.id).where(Order.order_number == order_number))
    return res.first() is not None


async def _unique_order_number(session: AsyncSession, factory: Callable[[], str]) -> str:
    for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
        candidate = factory()
        if not await _order_number_taken(session, candidate):
            return candidate
        logger.debug("Order number collision on '{number}', retrying", number=candidate)
    _count("create", "order_number_exhausted")
    raise StorefrontError("Could not allocate a unique order number")


def _actor_for(user: dict[str, Any] | None) -> str:
    if user and user.get("id"):
        return f"customer:{user['id']}"
    return "customer"


async def create_order(
    session: AsyncSession,
    validated: ValidatedOrder,
    user: dict[str, Any] | None = None,
    order_number_factory: Callable[[], str] = generate_order_number,
) -> Order:
    _count("create", "attempt")
    request = validated.request
    order_number = await _unique_order_number(session, order_number_factory)
    user_id = UUID(str(user["id"])) if user and user.get("id") else None

    items = [
        OrderItem(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=item.unit_price.minor_units,
            line_total=item.line_total.minor_units,
            requires_shipping=item.requires_shipping,
        )
        for item in validated.line_items
    ]
    order_totals = validated.totals
    order = Order(
        order_number=order_number,
        user_id=user_id,
        status=OrderStatus.PENDING.value,
        customer_email=request.customer.email,
        customer_first_name=request.customer.first_name,
        customer_last_name=request.customer.last_name,
        customer_phone=request.customer.phone,
        customer_type=request.customer.customer_type,
        business_vat_number=request.customer.vat_number,
        shipping_address=validated.shipping_address,
        billing_address=validated.billing_address,
        currency=order_totals.total.currency,
        subtotal=order_totals.subtotal.minor_units,
        vat_amount=order_totals.vat_amount.minor_units,
        vat_rate=order_totals.vat_rate,
        tax_rule_id=order_totals.tax_rule_id,
        shipping_cost=order_totals.shipping_cost.minor_units,
        total=order_totals.total.minor_units,
        shipping_option=validated.shipping_option.as_dict() if validated.shipping_option else None,
        payment_method=request.payment_method,
        payment_status="pending",
        special_instructions=request.special_instructions,
        gift_message=request.gift_message,
        has_exception=False,
        items=items,
    )
    order.events.append(
        OrderStatusEvent(
            from_status=None,
            to_status=OrderStatus.PENDING.value,
            actor=_actor_for(user),
            note="order_created",
        )
    )
    session.add(order)
    await session.flush()

    ORDER_TOTAL_MINOR_UNITS.labels(
        service=settings.SERVICE_NAME,
        country=validated.destination_country,
    ).observe(order.total)
    logger.info(
        "Order persisted. order_id='{order_id}', order_number='{order_number}', total={total}",
        order_id=str(order.id),
        order_number=order.order_number,
        total=order.total,
    )
    _count("create", "success")
    return order


def _order_query(include_deleted: bool = False):
    q = select(Order).options(selectinload(Order.items)).execution_options(populate_existing=True)
    if not include_deleted:
        q = q.where(Order.deleted_at.is_(None))
    return q


async def get_order(session: AsyncSession, order_id: UUID, include_deleted: bool = False) -> Order | None:
    res = await session.execute(_order_query(include_deleted).where(Order.id == order_id))
    order = res.scalar_one_or_none()
    logger.debug(
        "Service get_order completed. order_id='{order_id}', found={found}",
        order_id=str(order_id),
        found=bool(order),
    )
    return order


async def list_orders(
    session: AsyncSession,
    user_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[Order]:
    q = _order_query().order_by(Order.created_at.desc()).limit(limit).offset(offset)
    if user_id is not None:
        q = q.where(Order.user_id == user_id)
    res = await session.execute(q)
    return res.scalars().all()


async def get_order_events(session: AsyncSession, order_id: UUID) -> Sequence[OrderStatusEvent]:
    res = await session.execute(
        select(OrderStatusEvent)
        .where(OrderStatusEvent.order_id == order_id)
        .order_by(OrderStatusEvent.id)
    )
    return res.scalars().all()


async def find_order_by_parcel(session: AsyncSession, parcel_id: str) -> Order | None:
    res = await session.execute(_order_query().where(Order.parcel_id == parcel_id))
    return res.scalars().first()


async def find_order_by_payment(session: AsyncSession, payment_id: str) -> Order | None:
    res = await session.execute(_order_query().where(Order.payment_id == payment_id))
    return res.scalars().first()


async def soft_delete_order(session: AsyncSession, order_id: UUID) -> bool:
    _count("delete", "attempt")
    res = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.deleted_at.is_(None))
        .values(deleted_at=_now())
        .execution_options(synchronize_session=False)
    )
    deleted = res.rowcount > 0
    logger.info(
        "Service soft_delete_order completed. order_id='{order_id}', deleted={deleted}",
        order_id=str(order_id),
        deleted=deleted,
    )
    _count("delete", "success" if deleted else "not_found")
    return deleted


async def update_order_fields(session: AsyncSession, order_id: UUID, **values: Any) -> None:
    if not values:
        return
    await session.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(updated_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )


async def _current_status(session: AsyncSession, order_id: UUID) -> OrderStatus:
    res = await session.execute(
        select(Order.status).where(Order.id == order_id, Order.deleted_at.is_(None))
    )
    status = res.scalar_one_or_none()
    if status is None:
        raise NotFound(f"Order {order_id} not found")
    return OrderStatus(status)


def _status_side_values(target: OrderStatus, now: datetime) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if target is OrderStatus.SHIPPED:
        values["shipped_at"] = now
    if target is OrderStatus.DELIVERED:
        values["delivered_at"] = now
    if target in TERMINAL_STATES:
        values["has_exception"] = False
    return values


async def apply_transition(
    session: AsyncSession,
    order_id: UUID,
    target: OrderStatus | str,
    actor: str,
    provider_status: str | None = None,
    note: str | None = None,
    extra_values: dict[str, Any] | None = None,
    strict: bool = False,
) -> TransitionOutcome:
    """Move an order to ``target`` if the lifecycle allows it.

    The write is guarded on the status read just before it, so two concurrent
    notifications cannot both apply from the same state. A lost race re-reads
    and re-plans. Non-applicable targets are no-ops unless ``strict`` is set,
    in which case rejections raise InvalidTransition.
    """
    target = OrderStatus(target)
    for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
        current = await _current_status(session, order_id)
        plan = plan_transition(current, target)
        ORDER_TRANSITIONS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            actor=actor.split(":", 1)[0],
            decision=plan.decision.value,
        ).inc()

        if not plan.should_apply:
            log = logger.warning if plan.is_rejection else logger.info
            log(
                "Transition {current} -> {target} for order_id='{order_id}' not applied: {decision} (actor={actor})",
                current=current.value,
                target=target.value,
                order_id=str(order_id),
                decision=plan.decision.value,
                actor=actor,
            )
            if strict and plan.is_rejection:
                raise InvalidTransition(current.value, target.value, plan.decision.value)
            order = await get_order(session, order_id)
            return TransitionOutcome(order=order, plan=plan)

        now = _now()
        values = {"status": target.value, "updated_at": now}
        values.update(_status_side_values(target, now))
        values.update(extra_values or {})
        res = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            logger.warning(
                "Concurrent status change on order_id='{order_id}' (attempt {attempt}), re-planning",
                order_id=str(order_id),
                attempt=attempt,
            )
            continue

        session.add(
            OrderStatusEvent(
                order_id=order_id,
                from_status=current.value,
                to_status=target.value,
                actor=actor,
                provider_status=provider_status,
                note=note,
            )
        )
        await session.flush()
        logger.info(
            "Order status changed {current} -> {target}. order_id='{order_id}', actor={actor}",
            current=current.value,
            target=target.value,
            order_id=str(order_id),
            actor=actor,
        )
        order = await get_order(session, order_id)
        return TransitionOutcome(order=order, plan=plan)

    raise InvalidTransition(current.value, target.value, "concurrent_update")


async def set_exception(
    session: AsyncSession,
    order_id: UUID,
    active: bool,
    actor: str,
    note: str | None = None,
    provider_status: str | None = None,
    strict: bool = False,
) -> TransitionOutcome:
    """Flag or clear the delivery-exception annotation without changing status.

    Like ``apply_transition`` the write is guarded on the status it was planned
    against, so an order that moves to a terminal state meanwhile is never flagged.
    """
    notes = note if active else None
    for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
        order = await get_order(session, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        status = OrderStatus(order.status)

        if active and not can_flag_exception(status):
            plan = TransitionPlan(current=status, target=status, decision=Decision.INVALID)
            logger.warning(
                "Exception annotation ignored for order_id='{order_id}' in status {status}",
                order_id=str(order_id),
                status=status.value,
            )
            if strict:
                raise InvalidTransition(status.value, "exception", plan.decision.value)
            return TransitionOutcome(order=order, plan=plan)

        if order.has_exception == active and (not active or order.fulfillment_notes == notes):
            return TransitionOutcome(
                order=order,
                plan=TransitionPlan(current=status, target=status, decision=Decision.DUPLICATE),
            )

        res = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == status.value)
            .values(has_exception=active, fulfillment_notes=notes, updated_at=_now())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            logger.warning(
                "Concurrent status change on order_id='{order_id}' while annotating (attempt {attempt}), re-reading",
                order_id=str(order_id),
                attempt=attempt,
            )
            continue

        session.add(
            OrderStatusEvent(
                order_id=order_id,
                from_status=status.value,
                to_status=status.value,
                actor=actor,
                provider_status=provider_status,
                note=("exception_flagged: " + (note or "")) if active else "exception_cleared",
            )
        )
        await session.flush()
        logger.info(
            "Exception annotation {state} for order_id='{order_id}'",
            state="set" if active else "cleared",
            order_id=str(order_id),
        )
        order = await get_order(session, order_id)
        return TransitionOutcome(
            order=order,
            plan=TransitionPlan(current=status, target=status, decision=Decision.APPLY),
        )

    raise InvalidTransition(status.value, "exception", "concurrent_update")
