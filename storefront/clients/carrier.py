from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import UpstreamProviderError
from storefront.core.metrics import PROVIDER_REQUESTS_TOTAL
from storefront.domain.money import Money, to_major_units
from storefront.domain.shipping import package_weight

PROVIDER = "carrier"
SIGNATURE_HEADER = "x-sendcloud-signature"
WINE_HS_CODE = "220421"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    secret = settings.CARRIER_WEBHOOK_SECRET if secret is None else secret
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


@dataclass(frozen=True, slots=True)
class ParcelRequest:
    order_id: str
    order_number: str
    recipient: dict[str, Any]
    email: str
    bottles: int
    total_value: Money
    shipping_method: int | None = None


@dataclass(frozen=True, slots=True)
class CreatedParcel:
    parcel_id: str
    tracking_number: str | None
    tracking_url: str | None
    carrier: str | None


class CarrierClient:
    def __init__(
        self,
        base_url: str | None = None,
        public_key: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.CARRIER_API_URL
        self.auth = (
            public_key if public_key is not None else settings.CARRIER_PUBLIC_KEY,
            secret_key if secret_key is not None else settings.CARRIER_SECRET_KEY,
        )
        self.timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS
        self._transport = transport

    def build_parcel_payload(self, request: ParcelRequest) -> dict[str, Any]:
        recipient = request.recipient
        weight_kg = package_weight(request.bottles) / 1000
        declared_value = to_major_units(request.total_value)
        return {
            "parcel": {
                "name": f"{recipient.get('first_name', '')} {recipient.get('last_name', '')}".strip(),
                "company_name": recipient.get("company") or "",
                "address": recipient.get("address_line1"),
                "address_2": recipient.get("address_line2") or "",
                "city": recipient.get("city"),
                "postal_code": recipient.get("postal_code"),
                "country": recipient.get("country"),
                "telephone": recipient.get("phone") or "",
                "email": request.email,
                "weight": f"{weight_kg:.3f}",
                "order_number": request.order_number,
                "external_reference": f"wine-order-{request.order_id}",
                "insured_value": declared_value,
                "total_order_value": declared_value,
                "total_order_value_currency": request.total_value.currency,
                "quantity": request.bottles,
                "request_label": False,
                "shipment": {"id": request.shipping_method or settings.CARRIER_DEFAULT_SHIPPING_METHOD},
                "customs_declaration": {
                    "invoice_number": request.order_number,
                    "items": [
                        {
                            "description": "Wine",
                            "quantity": request.bottles,
                            "weight": f"{weight_kg:.3f}",
                            "value": declared_value,
                            "hs_code": WINE_HS_CODE,
                            "origin_country": "FR",
                        }
                    ],
                },
            }
        }

    async def create_parcel(self, request: ParcelRequest) -> CreatedParcel:
        PROVIDER_REQUESTS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            provider=PROVIDER,
            operation="create_parcel",
            status="attempt",
        ).inc()
        logger.info(
            "Creating parcel for order_id='{order_id}', bottles={bottles}",
            order_id=request.order_id,
            bottles=request.bottles,
        )
        payload = self.build_parcel_payload(request)

        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            auth=self.auth,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.post("/parcels", json=payload)
            except httpx.RequestError as e:
                PROVIDER_REQUESTS_TOTAL.labels(
                    service=settings.SERVICE_NAME,
                    provider=PROVIDER,
                    operation="create_parcel",
                    status="connection_error",
                ).inc()
                raise UpstreamProviderError(PROVIDER, f"connection error to carrier: {e}") from e

        if resp.status_code >= 400:
            PROVIDER_REQUESTS_TOTAL.labels(
                service=settings.SERVICE_NAME,
                provider=PROVIDER,
                operation="create_parcel",
                status="http_error",
            ).inc()
            raise UpstreamProviderError(PROVIDER, f"carrier error {resp.status_code}: {resp.text}")

        try:
            parcel = resp.json()["parcel"]
            carrier = parcel.get("carrier")
            created = CreatedParcel(
                parcel_id=str(parcel["id"]),
                tracking_number=parcel.get("tracking_number"),
                tracking_url=parcel.get("tracking_url"),
                carrier=carrier.get("code") if isinstance(carrier, dict) else carrier,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamProviderError(PROVIDER, "carrier returned an unexpected parcel payload") from e

        PROVIDER_REQUESTS_TOTAL.labels(
            service=settings.SERVICE_NAME,
            provider=PROVIDER,
            operation="create_parcel",
            status="success",
        ).inc()
        logger.info(
            "Parcel created for order_id='{order_id}', parcel_id='{parcel_id}'",
            order_id=request.order_id,
            parcel_id=created.parcel_id,
        )
        return created


carrier_client = CarrierClient()
