import json
from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.clients.catalog import CatalogClient, get_catalog_client
from storefront.clients.payments import PaymentProviderClient, get_payment_client
from storefront.core.config import settings
from storefront.core.errors import AuthorizationError, NotFound, UpstreamProviderError, ValidationErrors
from storefront.core.kafka import publish_order_event
from storefront.core.metrics import ORDERS_API_REQUESTS_TOTAL
from storefront.core.rate_limit import rate_limited
from storefront.db import get_db
from storefront.dependencies.auth import authentication_get_current_user, has_permission, permission_required
from storefront.domain.money import Money
from storefront.domain.state_machine import OrderStatus
from storefront.models.order import Order
from storefront.schemas.order import (
    OrderCreated,
    OrderEventOut,
    OrderExceptionPatch,
    OrderOut,
    OrderStatusPatch,
)
from storefront.service import orders as order_service
from storefront.service.fulfillment import FulfillmentHandoff, get_fulfillment_handoff, run_fulfillment_handoff
from storefront.service.validator import validate_order

router = APIRouter(prefix="/orders", tags=["Orders"])


def _count(endpoint: str, method: str, result: str) -> None:
    ORDERS_API_REQUESTS_TOTAL.labels(
        service=settings.SERVICE_NAME,
        endpoint=endpoint,
        method=method,
        status=result,
    ).inc()


def _staff_actor(user: Dict[str, Any]) -> str:
    return f"staff:{user.get('id')}"


async def _owned_order(
    db: AsyncSession,
    order_id: UUID,
    user: Dict[str, Any],
    endpoint: str,
    method: str,
) -> Order:
    order = await order_service.get_order(db, order_id)
    if order is None:
        logger.warning("Order not found. order_id='{order_id}'", order_id=str(order_id))
        _count(endpoint, method, "not_found")
        raise NotFound("Order not found")

    if str(order.user_id) != str(user.get("id")) and not has_permission(user, "can_get_all_orders"):
        logger.warning(
            "Access to order forbidden. order_id='{order_id}', user_id='{user_id}'",
            order_id=str(order_id),
            user_id=user.get("id"),
        )
        _count(endpoint, method, "forbidden")
        raise AuthorizationError("Not allowed to access this order (owner only)")
    return order


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationErrors({"body": ["Request body must be valid JSON"]})


@router.post(
    "/",
    response_model=OrderCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited("orders"))],
)
async def create_order(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(authentication_get_current_user),
    payments: PaymentProviderClient = Depends(get_payment_client),
    catalog: CatalogClient = Depends(get_catalog_client),
):
    logger.info(
        "Create order request received for user_id='{user_id}'",
        user_id=current_user.get("id"),
    )
    validated = await validate_order(await _read_json(request), catalog)

    created = await order_service.create_order(db, validated, current_user)
    await db.commit()
    order_id = created.id

    payment_url = None
    try:
        payment = await payments.create_payment(
            order_id=str(order_id),
            order_number=created.order_number,
            amount=Money(minor_units=created.total, currency=created.currency),
            customer_email=created.customer_email,
            method=validated.request.payment_method,
        )
    except (UpstreamProviderError, NotFound) as e:
        logger.error(
            "Payment creation failed for order_id='{order_id}'; order kept pending: {error}",
            order_id=str(order_id),
            error=e.message,
        )
        _count("/orders/", "POST", "payment_failed")
    else:
        await order_service.update_order_fields(
            db, order_id, payment_id=payment.id, payment_status=payment.status
        )
        await db.commit()
        payment_url = payment.checkout_url

    order = await order_service.get_order(db, order_id)
    await publish_order_event("ORDER_CREATED", order, items=[
        {"product_id": item.product_id, "quantity": item.quantity, "unit_price": item.unit_price}
        for item in order.items
    ])

    logger.info(
        "Order created. order_id='{order_id}', order_number='{order_number}'",
        order_id=str(order_id),
        order_number=order.order_number,
    )
    _count("/orders/", "POST", "success")
    return OrderCreated.model_validate(order).model_copy(update={"payment_url": payment_url})


@router.get("/", response_model=List[OrderOut])
async def list_orders(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(authentication_get_current_user),
):
    user_id = None if has_permission(current_user, "can_get_all_orders") else UUID(str(current_user["id"]))
    orders = await order_service.list_orders(db, user_id=user_id, limit=limit, offset=offset)
    _count("/orders/", "GET", "success")
    return orders


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(authentication_get_current_user),
):
    order = await _owned_order(db, order_id, current_user, "/orders/{order_id}", "GET")
    _count("/orders/{order_id}", "GET", "success")
    return order


@router.get("/{order_id}/events", response_model=List[OrderEventOut])
async def get_order_events(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(authentication_get_current_user),
):
    await _owned_order(db, order_id, current_user, "/orders/{order_id}/events", "GET")
    events = await order_service.get_order_events(db, order_id)
    _count("/orders/{order_id}/events", "GET", "success")
    return events


@router.patch("/{order_id}/status", response_model=OrderOut)
async def patch_order_status(
    order_id: UUID,
    payload: OrderStatusPatch,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(permission_required("can_patch_order_status")),
    handoff: FulfillmentHandoff = Depends(get_fulfillment_handoff),
):
    logger.info(
        "Patch order status request received. order_id='{order_id}', new_status='{status}', user_id='{user_id}'",
        order_id=str(order_id),
        status=payload.status.value,
        user_id=current_user.get("id"),
    )
    outcome = await order_service.apply_transition(
        db,
        order_id,
        payload.status,
        actor=_staff_actor(current_user),
        note=payload.note,
        strict=True,
    )
    await db.commit()

    if outcome.applied:
        await publish_order_event(
            "ORDER_STATUS_CHANGED",
            outcome.order,
            previous_status=outcome.plan.current.value,
        )
        if payload.status is OrderStatus.CONFIRMED:
            await run_fulfillment_handoff(outcome.order, handoff)

    _count("/orders/{order_id}/status", "PATCH", outcome.plan.decision.value)
    return outcome.order


@router.patch("/{order_id}/exception", response_model=OrderOut)
async def patch_order_exception(
    order_id: UUID,
    payload: OrderExceptionPatch,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(permission_required("can_patch_order_status")),
):
    outcome = await order_service.set_exception(
        db,
        order_id,
        active=payload.active,
        actor=_staff_actor(current_user),
        note=payload.note,
        strict=True,
    )
    await db.commit()
    if outcome.applied:
        await publish_order_event(
            "ORDER_EXCEPTION" if payload.active else "ORDER_EXCEPTION_CLEARED",
            outcome.order,
            message=payload.note,
        )
    _count("/orders/{order_id}/exception", "PATCH", outcome.plan.decision.value)
    return outcome.order


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(permission_required("can_delete_order")),
):
    logger.info(
        "Delete order request received. order_id='{order_id}', user_id='{user_id}'",
        order_id=str(order_id),
        user_id=current_user.get("id"),
    )
    order = await order_service.get_order(db, order_id)
    if order is None or not await order_service.soft_delete_order(db, order_id):
        _count("/orders/{order_id}", "DELETE", "not_found")
        raise NotFound("Order not found")
    await db.commit()

    await publish_order_event("ORDER_DELETED", order)
    _count("/orders/{order_id}", "DELETE", "success")
    return None
