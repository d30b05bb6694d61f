import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.clients.carrier import SIGNATURE_HEADER
from storefront.clients.payments import PaymentProviderClient, get_payment_client
from storefront.core.errors import ValidationErrors
from storefront.db import get_db
from storefront.schemas.webhooks import MalformedPayload, PaymentWebhookIn, WebhookAck
from storefront.service.fulfillment import FulfillmentHandoff, get_fulfillment_handoff
from storefront.service.validator import field_errors
from storefront.service.webhooks import handle_carrier_notification, handle_payment_notification

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


async def _payment_payload(request: Request) -> PaymentWebhookIn:
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            data = await request.json()
        else:
            data = dict(await request.form())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationErrors({"body": ["Payment webhook body is not valid JSON"]})

    if not isinstance(data, dict):
        raise ValidationErrors({"body": ["Payment webhook body must be an object"]})
    try:
        return PaymentWebhookIn.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationErrors(field_errors(exc), message="Invalid payment webhook") from exc


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    payments: PaymentProviderClient = Depends(get_payment_client),
    handoff: FulfillmentHandoff = Depends(get_fulfillment_handoff),
):
    payload = await _payment_payload(request)
    result = await handle_payment_notification(db, payload.id, payments, handoff)
    return WebhookAck(outcome=result.outcome)


@router.post("/carrier", response_model=WebhookAck)
async def carrier_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    body = await request.body()
    try:
        result = await handle_carrier_notification(db, body, request.headers.get(SIGNATURE_HEADER))
    except MalformedPayload as e:
        logger.warning("Malformed carrier webhook: {error}", error=str(e))
        raise ValidationErrors({"body": [str(e)]}, message="Invalid carrier webhook") from e
    return WebhookAck(outcome=result.outcome)


@router.get("/carrier")
async def carrier_webhook_check(challenge: str | None = Query(default=None, max_length=256)):
    if challenge:
        return {"challenge": challenge}
    return {
        "status": "Carrier webhook endpoint active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
