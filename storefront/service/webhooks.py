"""Reconciliation of provider notifications into the order lifecycle.

Notifications arrive out of order, duplicated, or for orders this service
does not know. Each one is re-checked against the order's current status, so
replays are no-ops. Only signature failures, malformed bodies and upstream
outages are reported back to the provider as errors.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.clients.carrier import verify_signature
from storefront.clients.payments import PaymentInfo, PaymentProviderClient
from storefront.core.config import settings
from storefront.core.errors import InvalidSignature, NotFound
from storefront.core.kafka import publish_order_event
from storefront.core.metrics import WEBHOOK_EVENTS_TOTAL
from storefront.domain.state_machine import OrderStatus, is_terminal
from storefront.models.order import Order
from storefront.schemas.webhooks import (
    CarrierEvent,
    MalformedPayload,
    ParcelDelivered,
    ParcelException,
    ParcelInfo,
    ParcelShipped,
    ParcelStatusChanged,
    UnrecognizedEvent,
    parse_carrier_event,
)
from storefront.service import orders as order_service
from storefront.service.fulfillment import FulfillmentHandoff, run_fulfillment_handoff

PAYMENT_ACTOR = "payment_provider"
CARRIER_ACTOR = "carrier_provider"

PAYMENT_STATUS_TARGETS: dict[str, OrderStatus] = {
    "paid": OrderStatus.CONFIRMED,
    "authorized": OrderStatus.CONFIRMED,
    "failed": OrderStatus.PAYMENT_FAILED,
    "expired": OrderStatus.PAYMENT_FAILED,
    "canceled": OrderStatus.PAYMENT_FAILED,
}

# Carrier parcel status ids that move the order forward.
CARRIER_STATUS_TARGETS: dict[int, OrderStatus] = {
    3: OrderStatus.SHIPPED,
    5: OrderStatus.SHIPPED,
    7: OrderStatus.SHIPPED,
    12: OrderStatus.SHIPPED,
    22: OrderStatus.SHIPPED,
    91: OrderStatus.SHIPPED,
    92: OrderStatus.SHIPPED,
    11: OrderStatus.DELIVERED,
    93: OrderStatus.DELIVERED,
}

# Carrier parcel status ids reported as delivery problems.
CARRIER_EXCEPTION_STATUSES = frozenset({8, 15, 62, 80})


@dataclass(frozen=True, slots=True)
class WebhookResult:
    outcome: str
    order_id: str | None = None


def _count(channel: str, result: str) -> None:
    WEBHOOK_EVENTS_TOTAL.labels(service=settings.SERVICE_NAME, channel=channel, result=result).inc()


async def _locate_payment_order(session: AsyncSession, payment: PaymentInfo) -> Order | None:
    if payment.order_id:
        try:
            order = await order_service.get_order(session, UUID(str(payment.order_id)))
        except ValueError:
            logger.warning(
                "Payment '{payment_id}' carries a malformed order id '{order_id}'",
                payment_id=payment.id,
                order_id=payment.order_id,
            )
            order = None
        if order is not None:
            return order
    return await order_service.find_order_by_payment(session, payment.id)


async def handle_payment_notification(
    session: AsyncSession,
    payment_id: str,
    client: PaymentProviderClient,
    handoff: FulfillmentHandoff,
) -> WebhookResult:
    logger.info("Payment notification received for payment_id='{payment_id}'", payment_id=payment_id)
    try:
        payment = await client.get_payment(payment_id)
    except NotFound:
        logger.warning("Payment '{payment_id}' unknown to provider; acknowledged", payment_id=payment_id)
        _count("payment", "payment_not_found")
        return WebhookResult(outcome="payment_not_found")

    order = await _locate_payment_order(session, payment)
    if order is None:
        logger.warning(
            "No order for payment_id='{payment_id}' (metadata order_id='{order_id}'); acknowledged",
            payment_id=payment.id,
            order_id=payment.order_id,
        )
        _count("payment", "order_not_found")
        return WebhookResult(outcome="order_not_found")

    order_id = order.id
    target = PAYMENT_STATUS_TARGETS.get(payment.status)
    if target is None:
        if order.payment_id is None or order.payment_status != payment.status:
            if order.status == OrderStatus.PENDING.value:
                await order_service.update_order_fields(
                    session, order_id, payment_id=payment.id, payment_status=payment.status
                )
                await session.commit()
        logger.info(
            "Payment '{payment_id}' is '{status}'; order_id='{order_id}' unchanged",
            payment_id=payment.id,
            status=payment.status,
            order_id=str(order_id),
        )
        _count("payment", "pending")
        return WebhookResult(outcome="pending", order_id=str(order_id))

    if target is OrderStatus.CONFIRMED and payment.amount is not None and payment.amount.minor_units != order.total:
        logger.error(
            "Payment '{payment_id}' amount {paid} does not match order_id='{order_id}' total {total}; not confirming",
            payment_id=payment.id,
            paid=payment.amount.minor_units,
            order_id=str(order_id),
            total=order.total,
        )
        _count("payment", "amount_mismatch")
        return WebhookResult(outcome="amount_mismatch", order_id=str(order_id))

    outcome = await order_service.apply_transition(
        session,
        order_id,
        target,
        actor=PAYMENT_ACTOR,
        provider_status=payment.status,
        extra_values={"payment_id": payment.id, "payment_status": payment.status},
    )
    await session.commit()
    _count("payment", outcome.plan.decision.value)

    if outcome.applied:
        await publish_order_event("ORDER_STATUS_CHANGED", outcome.order, previous_status=outcome.plan.current.value)
        if target is OrderStatus.CONFIRMED:
            await run_fulfillment_handoff(outcome.order, handoff)

    return WebhookResult(outcome=outcome.plan.decision.value, order_id=str(order_id))


def parse_carrier_body(body: bytes) -> CarrierEvent:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload("Carrier webhook body is not valid JSON") from e
    return parse_carrier_event(data)


def _tracking_values(parcel: ParcelInfo) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if parcel.status_message:
        values["carrier_status"] = parcel.status_message
    if parcel.tracking_number:
        values["tracking_number"] = parcel.tracking_number
    if parcel.tracking_url:
        values["tracking_url"] = parcel.tracking_url
    if parcel.carrier:
        values["carrier"] = parcel.carrier
    return values


def _provider_status(parcel: ParcelInfo) -> str | None:
    if parcel.status_id is None:
        return parcel.status_message
    return f"{parcel.status_id}:{parcel.status_message or ''}"


async def _carrier_transition(
    session: AsyncSession,
    order: Order,
    target: OrderStatus,
    parcel: ParcelInfo,
) -> WebhookResult:
    outcome = await order_service.apply_transition(
        session,
        order.id,
        target,
        actor=CARRIER_ACTOR,
        provider_status=_provider_status(parcel),
        extra_values=_tracking_values(parcel),
    )
    await session.commit()
    if outcome.applied:
        await publish_order_event(
            "ORDER_STATUS_CHANGED",
            outcome.order,
            previous_status=outcome.plan.current.value,
            tracking_number=outcome.order.tracking_number,
        )
    return WebhookResult(outcome=outcome.plan.decision.value, order_id=str(order.id))


async def _carrier_exception(
    session: AsyncSession,
    order: Order,
    parcel: ParcelInfo,
    message: str,
) -> WebhookResult:
    outcome = await order_service.set_exception(
        session,
        order.id,
        active=True,
        actor=CARRIER_ACTOR,
        note=f"Delivery exception: {message}",
        provider_status=_provider_status(parcel),
    )
    await session.commit()
    if outcome.applied:
        await publish_order_event("ORDER_EXCEPTION", outcome.order, message=message)
    return WebhookResult(outcome=outcome.plan.decision.value, order_id=str(order.id))


async def handle_carrier_event(session: AsyncSession, event: CarrierEvent) -> WebhookResult:
    if isinstance(event, UnrecognizedEvent):
        logger.info(
            "Unhandled carrier action '{action}' for parcel '{parcel_id}'; acknowledged",
            action=event.action,
            parcel_id=event.parcel_id,
        )
        _count("carrier", "ignored")
        return WebhookResult(outcome="ignored")

    parcel = event.parcel
    order = await order_service.find_order_by_parcel(session, parcel.parcel_id)
    if order is None:
        logger.warning("No order for parcel '{parcel_id}'; acknowledged", parcel_id=parcel.parcel_id)
        _count("carrier", "order_not_found")
        return WebhookResult(outcome="order_not_found")

    if isinstance(event, ParcelShipped):
        result = await _carrier_transition(session, order, OrderStatus.SHIPPED, parcel)
    elif isinstance(event, ParcelDelivered):
        result = await _carrier_transition(session, order, OrderStatus.DELIVERED, parcel)
    elif isinstance(event, ParcelException):
        result = await _carrier_exception(session, order, parcel, event.message)
    elif isinstance(event, ParcelStatusChanged) and parcel.status_id in CARRIER_STATUS_TARGETS:
        result = await _carrier_transition(session, order, CARRIER_STATUS_TARGETS[parcel.status_id], parcel)
    elif isinstance(event, ParcelStatusChanged) and parcel.status_id in CARRIER_EXCEPTION_STATUSES:
        message = parcel.status_message or f"carrier status {parcel.status_id}"
        result = await _carrier_exception(session, order, parcel, message)
    elif is_terminal(order.status):
        logger.info(
            "Carrier status '{status}' for {order_status} order_id='{order_id}' discarded",
            status=_provider_status(parcel),
            order_status=order.status,
            order_id=str(order.id),
        )
        result = WebhookResult(outcome="terminal", order_id=str(order.id))
    else:
        values = {
            key: value
            for key, value in _tracking_values(parcel).items()
            if getattr(order, key) != value
        }
        if values:
            await order_service.update_order_fields(session, order.id, **values)
            await session.commit()
        logger.info(
            "Carrier status '{status}' for order_id='{order_id}' recorded without transition",
            status=_provider_status(parcel),
            order_id=str(order.id),
        )
        result = WebhookResult(outcome="recorded" if values else "duplicate", order_id=str(order.id))

    _count("carrier", result.outcome)
    return result


async def handle_carrier_notification(
    session: AsyncSession,
    body: bytes,
    signature: str | None,
) -> WebhookResult:
    if not verify_signature(body, signature):
        _count("carrier", "invalid_signature")
        logger.warning("Carrier webhook rejected: invalid signature")
        raise InvalidSignature("Invalid carrier webhook signature")
    event = parse_carrier_body(body)
    return await handle_carrier_event(session, event)
