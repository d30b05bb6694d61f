import json
from unittest.mock import AsyncMock
from uuid import UUID

from storefront.clients.carrier import SIGNATURE_HEADER, compute_signature
from storefront.core.errors import UpstreamProviderError
from storefront.core.rate_limit import InMemoryRateLimiter
from storefront.main import app
from storefront.service import orders as order_service

from conftest import STAFF_ID, auth_headers

STAFF = auth_headers(STAFF_ID, ["can_get_all_orders", "can_patch_order_status", "can_delete_order"])


async def create(client, payload, headers=None):
    return await client.post("/orders/", json=payload, headers=headers or auth_headers())


class TestCreateOrder:
    async def test_created_with_payment_link(self, client, france_order, payment_client):
        response = await create(client, france_order)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["total"] == 6300
        assert body["payment_id"] == "tr_0001"
        assert body["payment_url"] == "https://pay.example.test/tr_0001"
        assert body["order_number"].startswith("DV-")
        assert payment_client.created == [body["id"]]
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert "X-Request-ID" in response.headers

    async def test_payment_outage_keeps_order(self, client, france_order, payment_client):
        payment_client.fail_create = True

        response = await create(client, france_order)

        assert response.status_code == 201
        assert response.json()["payment_url"] is None
        assert response.json()["payment_id"] is None

    async def test_requires_token(self, client, france_order):
        response = await client.post("/orders/", json=france_order)
        assert response.status_code == 401
        assert response.json()["error"] == "authentication_required"

    async def test_totals_mismatch(self, client, france_order):
        france_order["totals"]["total"] = 6000

        response = await create(client, france_order)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "totals_mismatch"
        assert body["details"]["calculated"]["total"] == 6300

    async def test_tampered_prices_are_rejected(self, client, france_order):
        france_order["items"] = [{"product_id": "chablis-2021", "quantity": 6, "unit_price": 1}]
        france_order["shipping_option"]["price"] = 0
        france_order["totals"] = {"subtotal": 6, "vat_amount": 1, "shipping_cost": 0, "total": 7}

        response = await create(client, france_order)

        assert response.status_code == 400
        details = response.json()["details"]
        assert "items.0.unit_price" in details
        assert "shipping_option.price" in details
        assert (await client.get("/orders/", headers=STAFF)).json() == []

    async def test_catalog_outage(self, client, france_order, catalog):
        catalog.get_products = AsyncMock(side_effect=UpstreamProviderError("catalog", "catalog error 503"))

        response = await create(client, france_order)

        assert response.status_code == 502
        assert response.json()["details"]["provider"] == "catalog"

    async def test_invalid_json(self, client):
        response = await client.post(
            "/orders/",
            content=b"{not json",
            headers={**auth_headers(), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_field_errors(self, client, france_order):
        france_order["customer"]["email"] = "not-an-email"
        response = await create(client, france_order)
        assert response.status_code == 400
        assert "customer.email" in response.json()["details"]

    async def test_rate_limited(self, client, france_order):
        app.state.rate_limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)

        assert (await create(client, france_order)).status_code == 201
        response = await create(client, france_order)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1


class TestReadOrders:
    async def test_owner_can_read(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]

        response = await client.get(f"/orders/{order_id}", headers=auth_headers())
        events = await client.get(f"/orders/{order_id}/events", headers=auth_headers())

        assert response.status_code == 200
        assert sorted(item["product_id"] for item in response.json()["items"]) == ["chablis-2021", "meursault-2020"]
        assert [e["to_status"] for e in events.json()] == ["pending"]

    async def test_other_customer_is_forbidden(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]
        response = await client.get(f"/orders/{order_id}", headers=auth_headers(STAFF_ID))
        assert response.status_code == 403

    async def test_staff_can_read_any(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]
        assert (await client.get(f"/orders/{order_id}", headers=STAFF)).status_code == 200
        assert len((await client.get("/orders/", headers=STAFF)).json()) == 1
        assert (await client.get("/orders/", headers=auth_headers(STAFF_ID, ["can_patch_order_status"]))).json() == []

    async def test_unknown_order(self, client):
        response = await client.get("/orders/3fa85f64-5717-4562-b3fc-2c963f66afa6", headers=STAFF)
        assert response.status_code == 404


class TestStaffActions:
    async def test_confirm_then_reopen_cancelled(self, client, france_order, handoff):
        order_id = (await create(client, france_order)).json()["id"]

        confirmed = await client.patch(f"/orders/{order_id}/status", json={"status": "confirmed"}, headers=STAFF)
        stale = await client.patch(f"/orders/{order_id}/status", json={"status": "pending"}, headers=STAFF)
        await client.patch(f"/orders/{order_id}/status", json={"status": "cancelled"}, headers=STAFF)
        back = await client.patch(f"/orders/{order_id}/status", json={"status": "confirmed"}, headers=STAFF)

        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "confirmed"
        handoff.assert_awaited_once()
        assert stale.status_code == 200
        assert stale.json()["status"] == "confirmed"
        assert back.status_code == 409
        assert back.json()["details"]["current"] == "cancelled"

    async def test_status_patch_requires_permission(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]
        response = await client.patch(
            f"/orders/{order_id}/status", json={"status": "confirmed"}, headers=auth_headers()
        )
        assert response.status_code == 403

    async def test_exception_annotation(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]
        for status in ("confirmed", "shipped"):
            await client.patch(f"/orders/{order_id}/status", json={"status": status}, headers=STAFF)

        flagged = await client.patch(
            f"/orders/{order_id}/exception", json={"active": True, "note": "Damaged box"}, headers=STAFF
        )

        assert flagged.status_code == 200
        assert flagged.json()["has_exception"] is True
        assert flagged.json()["status"] == "shipped"

    async def test_delete(self, client, france_order):
        order_id = (await create(client, france_order)).json()["id"]

        response = await client.delete(f"/orders/{order_id}", headers=STAFF)

        assert response.status_code == 204
        assert (await client.get(f"/orders/{order_id}", headers=STAFF)).status_code == 404
        assert (await client.delete(f"/orders/{order_id}", headers=STAFF)).status_code == 404


class TestWebhookRoutes:
    async def test_payment_webhook_form(self, client, france_order, payment_client, handoff):
        order_id = (await create(client, france_order)).json()["id"]
        payment_client.add("tr_0001", "paid", order_id=order_id, amount=6300)

        response = await client.post("/webhooks/payments", data={"id": "tr_0001"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "outcome": "apply"}
        handoff.assert_awaited_once()
        order = await client.get(f"/orders/{order_id}", headers=auth_headers())
        assert order.json()["status"] == "confirmed"

    async def test_payment_webhook_json_unknown_payment(self, client):
        response = await client.post("/webhooks/payments", json={"id": "tr_unknown"})
        assert response.status_code == 200
        assert response.json()["outcome"] == "payment_not_found"

    async def test_payment_webhook_rejects_unsafe_id(self, client, payment_client):
        payment_client.add("tr_0001", "paid")

        response = await client.post("/webhooks/payments", json={"id": "../../refunds/tr_0001"})

        assert response.status_code == 400
        assert "id" in response.json()["details"]

    async def test_payment_webhook_without_id(self, client):
        response = await client.post("/webhooks/payments", json={"status": "paid"})
        assert response.status_code == 400

    async def test_carrier_webhook_signature(self, client, session_factory, france_order):
        order_id = (await create(client, france_order)).json()["id"]
        await client.patch(f"/orders/{order_id}/status", json={"status": "confirmed"}, headers=STAFF)
        async with session_factory() as session:
            order = await order_service.get_order(session, UUID(order_id))
            await order_service.update_order_fields(session, order.id, parcel_id="4242")
            await session.commit()

        body = json.dumps({
            "action": "parcel_shipped",
            "parcel": {"id": 4242, "status": {"id": 3, "message": "En route"}, "tracking_number": "6A1"},
        }).encode()

        rejected = await client.post("/webhooks/carrier", content=body, headers={SIGNATURE_HEADER: "bad"})
        accepted = await client.post(
            "/webhooks/carrier",
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(body, "test-webhook-secret")},
        )

        assert rejected.status_code == 401
        assert accepted.status_code == 200
        assert accepted.json()["outcome"] == "apply"
        order = await client.get(f"/orders/{order_id}", headers=STAFF)
        assert order.json()["status"] == "shipped"
        assert order.json()["tracking_number"] == "6A1"

    async def test_carrier_webhook_malformed(self, client):
        body = b"[1, 2"
        response = await client.post(
            "/webhooks/carrier",
            content=body,
            headers={SIGNATURE_HEADER: compute_signature(body, "test-webhook-secret")},
        )
        assert response.status_code == 400

    async def test_carrier_challenge(self, client):
        assert (await client.get("/webhooks/carrier", params={"challenge": "abc"})).json() == {"challenge": "abc"}
        status = (await client.get("/webhooks/carrier")).json()
        assert "timestamp" in status


class TestShippingRoutes:
    async def test_options(self, client):
        response = await client.post(
            "/shipping/options",
            json={"destination": {"country": "fr"}, "items": [{"quantity": 2}], "total_value": 3000},
        )

        assert response.status_code == 200
        body = response.json()
        option = body["carriers"][0]["shipping_options"][0]
        assert option["code"] == "colissimo-standard"
        assert option["price"] == 690
        assert option["price_display"] == "€6.90"
        assert body["destination"]["country"] == "FR"
        assert body["package_info"]["total_bottles"] == 2

    async def test_vat_preview(self, client):
        response = await client.post("/vat/calculate", json={"amount": 10000, "shipping_amount": 690, "country": "FR"})

        assert response.status_code == 200
        body = response.json()
        assert body["vat_amount"] == 2138
        assert body["total_amount"] == 12828
        assert body["is_reverse_charge"] is False
        assert body["formatted"]["vat_rate"] == "20%"

    async def test_vat_unknown_country(self, client):
        response = await client.post("/vat/calculate", json={"amount": 10000, "country": "US"})
        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_jurisdiction"


class TestServiceRoutes:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.json() == {"status": "ok", "service": "storefront"}

    async def test_metrics(self, client):
        await client.get("/health")
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert b"storefront_http_requests_total" in response.content
