from __future__ import annotations

import asyncio
from uuid import UUID

from loguru import logger
from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.clients.carrier import CarrierClient, ParcelRequest, carrier_client
from storefront.core.config import settings
from storefront.core.errors import UpstreamProviderError
from storefront.domain.money import Money
from storefront.domain.state_machine import OrderStatus
from storefront.service import orders as order_service
from storefront.worker.celery_app import celery_app

PARCEL_TASK_RESULTS_TOTAL = Counter(
    "storefront_worker_parcel_task_results_total",
    "Results of fulfillment.create_parcel task",
    ["service", "result"],
)

PARCEL_READY_STATES = frozenset({OrderStatus.CONFIRMED.value, OrderStatus.PROCESSING.value})


async def create_parcel(
    session: AsyncSession,
    order_id: UUID,
    client: CarrierClient = carrier_client,
) -> str:
    order = await order_service.get_order(session, order_id)
    if order is None:
        logger.warning("Parcel task: order_id='{order_id}' not found", order_id=str(order_id))
        return "not_found"
    if order.parcel_id:
        logger.info(
            "Parcel task: order_id='{order_id}' already has parcel '{parcel_id}'",
            order_id=str(order_id),
            parcel_id=order.parcel_id,
        )
        return "already_created"
    if order.status not in PARCEL_READY_STATES:
        logger.info(
            "Parcel task: order_id='{order_id}' in status {status}, skipping",
            order_id=str(order_id),
            status=order.status,
        )
        return "skipped"

    bottles = sum(item.quantity for item in order.items if item.requires_shipping)
    shipping_method = (order.shipping_option or {}).get("carrier_method_id")
    parcel = await client.create_parcel(
        ParcelRequest(
            order_id=str(order.id),
            order_number=order.order_number,
            recipient=order.shipping_address,
            email=order.customer_email,
            bottles=bottles,
            total_value=Money(minor_units=order.total, currency=order.currency),
            shipping_method=shipping_method,
        )
    )

    await order_service.update_order_fields(
        session,
        order.id,
        parcel_id=parcel.parcel_id,
        tracking_number=parcel.tracking_number,
        tracking_url=parcel.tracking_url,
        carrier=parcel.carrier,
    )
    await order_service.apply_transition(
        session,
        order.id,
        OrderStatus.PROCESSING,
        actor="system",
        note=f"parcel_created:{parcel.parcel_id}",
    )
    await session.commit()
    return "created"


async def _run(order_id: str) -> str:
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    try:
        async with session_factory() as session:
            return await create_parcel(session, UUID(order_id))
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="fulfillment.create_parcel",
    max_retries=5,
    default_retry_delay=60,
)
def create_parcel_for_order(self, order_id: str) -> str:
    try:
        result = asyncio.run(_run(order_id))
    except UpstreamProviderError as exc:
        PARCEL_TASK_RESULTS_TOTAL.labels(service=settings.SERVICE_NAME, result="retry").inc()
        logger.exception(
            "Carrier parcel creation failed for order_id='{order_id}', retrying (attempt {attempt} of {max}): {error}",
            order_id=order_id,
            attempt=self.request.retries + 1,
            max=self.max_retries,
            error=str(exc),
        )
        raise self.retry(exc=exc)

    PARCEL_TASK_RESULTS_TOTAL.labels(service=settings.SERVICE_NAME, result=result).inc()
    return result
