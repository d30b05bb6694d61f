import json
from unittest.mock import AsyncMock

import pytest

from storefront.clients.carrier import compute_signature
from storefront.core.errors import InvalidSignature, UpstreamProviderError
from storefront.schemas.webhooks import MalformedPayload
from storefront.service import orders as order_service
from storefront.service.validator import validate
from storefront.service.webhooks import handle_carrier_notification, handle_payment_notification

from conftest import CATALOG_PRODUCTS, CUSTOMER_ID

SECRET = "test-webhook-secret"


async def place(session, payload):
    order = await order_service.create_order(session, validate(payload, CATALOG_PRODUCTS), {"id": str(CUSTOMER_ID)})
    await session.commit()
    return order


async def confirmed_with_parcel(session, payload, parcel_id="4242"):
    order = await place(session, payload)
    await order_service.apply_transition(session, order.id, "confirmed", actor="payment_provider")
    await order_service.update_order_fields(session, order.id, parcel_id=parcel_id)
    await session.commit()
    return order


def signed(payload):
    body = json.dumps(payload).encode()
    return body, compute_signature(body, SECRET)


def carrier_event(action, parcel_id="4242", status_id=None, message=None, **extra):
    parcel = {"id": parcel_id, "tracking_number": "6A12345678901"}
    if status_id is not None:
        parcel["status"] = {"id": status_id, "message": message}
    return {"action": action, "parcel": parcel, "timestamp": 1760000000000, **extra}


class TestPaymentNotification:
    async def test_paid_confirms_and_hands_off(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "paid", order_id=order.id, amount=6300)
        handoff = AsyncMock()

        result = await handle_payment_notification(session, "tr_1", payment_client, handoff)

        assert result.outcome == "apply"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "confirmed"
        assert stored.payment_id == "tr_1"
        assert stored.payment_status == "paid"
        handoff.assert_awaited_once()
        assert handoff.await_args.args[0].id == order.id

    async def test_replayed_notification_hands_off_once(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "paid", order_id=order.id, amount=6300)
        handoff = AsyncMock()

        await handle_payment_notification(session, "tr_1", payment_client, handoff)
        result = await handle_payment_notification(session, "tr_1", payment_client, handoff)

        assert result.outcome == "duplicate"
        handoff.assert_awaited_once()

    async def test_fulfillment_failure_keeps_confirmation(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "paid", order_id=order.id, amount=6300)
        handoff = AsyncMock(side_effect=ConnectionError("broker down"))

        result = await handle_payment_notification(session, "tr_1", payment_client, handoff)

        assert result.outcome == "apply"
        assert (await order_service.get_order(session, order.id)).status == "confirmed"

    async def test_open_payment_only_records_reference(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "open", order_id=order.id, amount=6300)

        result = await handle_payment_notification(session, "tr_1", payment_client, AsyncMock())

        assert result.outcome == "pending"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "pending"
        assert stored.payment_id == "tr_1"
        assert stored.payment_status == "open"

    async def test_failed_payment(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "expired", order_id=order.id)

        await handle_payment_notification(session, "tr_1", payment_client, AsyncMock())

        stored = await order_service.get_order(session, order.id)
        assert stored.status == "payment_failed"
        assert stored.payment_status == "expired"

    async def test_late_failure_after_confirmation_is_ignored(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "paid", order_id=order.id, amount=6300)
        await handle_payment_notification(session, "tr_1", payment_client, AsyncMock())
        payment_client.add("tr_2", "failed", order_id=order.id)

        result = await handle_payment_notification(session, "tr_2", payment_client, AsyncMock())

        assert result.outcome == "stale"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "confirmed"
        assert stored.payment_id == "tr_1"

    async def test_amount_mismatch_is_not_confirmed(self, session, france_order, payment_client):
        order = await place(session, france_order)
        payment_client.add("tr_1", "paid", order_id=order.id, amount=100)
        handoff = AsyncMock()

        result = await handle_payment_notification(session, "tr_1", payment_client, handoff)

        assert result.outcome == "amount_mismatch"
        assert (await order_service.get_order(session, order.id)).status == "pending"
        handoff.assert_not_awaited()

    async def test_order_found_by_stored_payment_id(self, session, france_order, payment_client):
        order = await place(session, france_order)
        await order_service.update_order_fields(session, order.id, payment_id="tr_9")
        await session.commit()
        payment_client.add("tr_9", "paid", order_id=None, amount=6300)

        result = await handle_payment_notification(session, "tr_9", payment_client, AsyncMock())

        assert result.order_id == str(order.id)
        assert (await order_service.get_order(session, order.id)).status == "confirmed"

    async def test_unknown_payment_is_acknowledged(self, session, payment_client):
        result = await handle_payment_notification(session, "tr_missing", payment_client, AsyncMock())
        assert result.outcome == "payment_not_found"

    async def test_unknown_order_is_acknowledged(self, session, payment_client):
        payment_client.add("tr_1", "paid", order_id="3fa85f64-5717-4562-b3fc-2c963f66afa6")
        result = await handle_payment_notification(session, "tr_1", payment_client, AsyncMock())
        assert result.outcome == "order_not_found"

    async def test_provider_outage_propagates(self, session):
        client = AsyncMock()
        client.get_payment.side_effect = UpstreamProviderError("payment", "payment provider error 503")
        with pytest.raises(UpstreamProviderError):
            await handle_payment_notification(session, "tr_1", client, AsyncMock())


class TestCarrierNotification:
    async def test_invalid_signature_changes_nothing(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        body, _ = signed(carrier_event("parcel_shipped"))

        with pytest.raises(InvalidSignature):
            await handle_carrier_notification(session, body, "0" * 64)

        stored = await order_service.get_order(session, order.id)
        assert stored.status == "confirmed"
        assert stored.tracking_number is None

    async def test_shipped_then_duplicate(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        body, signature = signed(carrier_event("parcel_shipped", status_id=3, message="En route"))

        first = await handle_carrier_notification(session, body, signature)
        second = await handle_carrier_notification(session, body, signature)

        assert (first.outcome, second.outcome) == ("apply", "duplicate")
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "shipped"
        assert stored.tracking_number == "6A12345678901"
        assert len(await order_service.get_order_events(session, order.id)) == 3

    async def test_delivered_before_shipped(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        delivered, delivered_sig = signed(carrier_event("parcel_delivered", status_id=11, message="Delivered"))
        shipped, shipped_sig = signed(carrier_event("parcel_shipped", status_id=3, message="En route"))

        await handle_carrier_notification(session, delivered, delivered_sig)
        late = await handle_carrier_notification(session, shipped, shipped_sig)

        assert late.outcome == "terminal"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "delivered"
        assert stored.delivered_at is not None

    async def test_status_table_drives_transition(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        body, signature = signed(carrier_event("parcel_status_changed", status_id=93, message="Collected"))

        await handle_carrier_notification(session, body, signature)

        assert (await order_service.get_order(session, order.id)).status == "delivered"

    async def test_exception_flags_without_status_change(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        shipped, shipped_sig = signed(carrier_event("parcel_shipped", status_id=3))
        await handle_carrier_notification(session, shipped, shipped_sig)
        body, signature = signed(carrier_event("parcel_exception", status_id=80, message="Exception"))

        await handle_carrier_notification(session, body, signature)

        stored = await order_service.get_order(session, order.id)
        assert stored.status == "shipped"
        assert stored.has_exception is True
        assert stored.fulfillment_notes == "Delivery exception: Exception"

    async def test_unmapped_status_is_recorded(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        body, signature = signed(carrier_event("parcel_status_changed", status_id=1, message="Announced"))

        result = await handle_carrier_notification(session, body, signature)

        assert result.outcome == "recorded"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "confirmed"
        assert stored.carrier_status == "Announced"

    async def test_unmapped_status_on_cancelled_order_is_discarded(self, session, france_order):
        order = await confirmed_with_parcel(session, france_order)
        await order_service.apply_transition(session, order.id, "cancelled", actor="staff:1")
        await session.commit()
        event = carrier_event("parcel_status_changed", status_id=1, message="Announced")
        event["parcel"]["tracking_number"] = "NEW-TRACK"
        body, signature = signed(event)

        result = await handle_carrier_notification(session, body, signature)

        assert result.outcome == "terminal"
        stored = await order_service.get_order(session, order.id)
        assert stored.status == "cancelled"
        assert stored.tracking_number is None
        assert stored.carrier_status is None

    async def test_unknown_parcel_is_acknowledged(self, session, france_order):
        await confirmed_with_parcel(session, france_order)
        body, signature = signed(carrier_event("parcel_shipped", parcel_id="999"))
        result = await handle_carrier_notification(session, body, signature)
        assert result.outcome == "order_not_found"

    async def test_unrecognized_action(self, session):
        body, signature = signed({"action": "integration_connected", "integration": {"id": 1}})
        result = await handle_carrier_notification(session, body, signature)
        assert result.outcome == "ignored"

    async def test_malformed_body(self, session):
        body = b"not json"
        with pytest.raises(MalformedPayload):
            await handle_carrier_notification(session, body, compute_signature(body, SECRET))
