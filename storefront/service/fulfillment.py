from __future__ import annotations

from typing import Awaitable, Callable

from loguru import logger

from storefront.core.config import settings
from storefront.core.metrics import FULFILLMENT_HANDOFF_TOTAL
from storefront.models.order import Order

FulfillmentHandoff = Callable[[Order], Awaitable[None]]


async def enqueue_parcel_creation(order: Order) -> None:
    from storefront.worker.tasks import create_parcel_for_order

    result = create_parcel_for_order.delay(str(order.id))
    logger.info(
        "Parcel creation queued for order_id='{order_id}', task_id='{task_id}'",
        order_id=str(order.id),
        task_id=result.id,
    )


async def run_fulfillment_handoff(order: Order, handoff: FulfillmentHandoff) -> bool:
    """Start fulfillment for a confirmed order. Failures are logged, never raised."""
    try:
        await handoff(order)
    except Exception as e:
        FULFILLMENT_HANDOFF_TOTAL.labels(service=settings.SERVICE_NAME, result="error").inc()
        logger.exception(
            "Fulfillment handoff failed for order_id='{order_id}': {error}",
            order_id=str(order.id),
            error=str(e),
        )
        return False
    FULFILLMENT_HANDOFF_TOTAL.labels(service=settings.SERVICE_NAME, result="success").inc()
    return True


def get_fulfillment_handoff() -> FulfillmentHandoff:
    return enqueue_parcel_creation
