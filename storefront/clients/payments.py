from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import InvalidAmount, NotFound, UpstreamProviderError
from storefront.core.metrics import PROVIDER_REQUESTS_TOTAL
from storefront.domain.money import Money, to_major_units, to_minor_units

PROVIDER = "payment"

WINE_PAYMENT_METHODS = ("creditcard", "bancontact", "ideal", "sofort", "banktransfer", "paypal")


@dataclass(frozen=True, slots=True)
class PaymentInfo:
    id: str
    status: str
    order_id: str | None
    checkout_url: str | None
    amount: Money | None
    method: str | None = None


def parse_payment(data: dict[str, Any]) -> PaymentInfo:
    metadata = data.get("metadata") or {}
    links = data.get("_links") or {}
    checkout = links.get("checkout") or {}
    amount = None
    raw_amount = data.get("amount")
    if isinstance(raw_amount, dict) and raw_amount.get("value") is not None:
        try:
            amount = to_minor_units(raw_amount["value"], raw_amount.get("currency", "EUR"))
        except InvalidAmount:
            logger.warning(
                "Payment '{payment_id}' has an unreadable amount {amount}",
                payment_id=data.get("id"),
                amount=raw_amount,
            )
    return PaymentInfo(
        id=str(data["id"]),
        status=str(data.get("status", "")).lower(),
        order_id=metadata.get("order_id") or metadata.get("orderId"),
        checkout_url=checkout.get("href"),
        amount=amount,
        method=data.get("method"),
    )


class PaymentProviderClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.PAYMENT_API_URL
        self.api_key = api_key if api_key is not None else settings.PAYMENT_API_KEY
        self.timeout = timeout or settings.PAYMENT_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self._transport,
        )

    async def _request(self, operation: str, method: str, path: str, json: dict | None = None) -> dict:
        PROVIDER_REQUESTS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            provider=PROVIDER,
            operation=operation,
            status="attempt",
        ).inc()
        async with self._client() as client:
            try:
                resp = await client.request(method, path, json=json)
            except httpx.RequestError as e:
                PROVIDER_REQUESTS_TOTAL.labels(
                    service=settings.SERVICE_NAME,
                    provider=PROVIDER,
                    operation=operation,
                    status="connection_error",
                ).inc()
                raise UpstreamProviderError(PROVIDER, f"connection error to payment provider: {e}") from e

        if resp.status_code == 404:
            PROVIDER_REQUESTS_TOTAL.labels(
                service=settings.SERVICE_NAME,
                provider=PROVIDER,
                operation=operation,
                status="not_found",
            ).inc()
            raise NotFound(f"Payment provider resource {path} not found")

        if resp.status_code >= 400:
            PROVIDER_REQUESTS_TOTAL.labels(
                service=settings.SERVICE_NAME,
                provider=PROVIDER,
                operation=operation,
                status="http_error",
            ).inc()
            raise UpstreamProviderError(
                PROVIDER,
                f"payment provider error {resp.status_code}: {resp.text}",
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProviderError(PROVIDER, "payment provider returned invalid JSON") from e

        PROVIDER_REQUESTS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            provider=PROVIDER,
            operation=operation,
            status="success",
        ).inc()
        return data

    async def get_payment(self, payment_id: str) -> PaymentInfo:
        logger.info("Fetching payment '{payment_id}' from provider", payment_id=payment_id)
        data = await self._request("get_payment", "GET", f"/payments/{payment_id}")
        return parse_payment(data)

    async def create_payment(
        self,
        order_id: str,
        order_number: str,
        amount: Money,
        customer_email: str,
        method: str | None = None,
    ) -> PaymentInfo:
        payload = {
            "amount": {"currency": amount.currency, "value": to_major_units(amount)},
            "description": f"Wine order {order_number}",
            "redirectUrl": settings.PAYMENT_REDIRECT_URL.format(order_id=order_id),
            "webhookUrl": settings.PAYMENT_WEBHOOK_URL,
            "metadata": {
                "order_id": order_id,
                "order_number": order_number,
                "customer_email": customer_email,
                "order_type": "wine",
            },
            "method": [method] if method else list(WINE_PAYMENT_METHODS),
        }
        logger.info(
            "Creating payment for order_id='{order_id}' amount={amount} {currency}",
            order_id=order_id,
            amount=payload["amount"]["value"],
            currency=amount.currency,
        )
        data = await self._request("create_payment", "POST", "/payments", json=payload)
        return parse_payment(data)


payment_client = PaymentProviderClient()


def get_payment_client() -> PaymentProviderClient:
    return payment_client
