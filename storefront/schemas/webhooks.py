"""Inbound webhook payloads.

Carrier notifications are parsed into one of a closed set of events. Unknown
actions become ``UnrecognizedEvent`` so the caller can acknowledge and drop them.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field


class PaymentWebhookIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_]+$")


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str | None = None


@dataclass(frozen=True, slots=True)
class ParcelInfo:
    parcel_id: str
    status_id: int | None
    status_message: str | None
    tracking_number: str | None
    tracking_url: str | None
    carrier: str | None


@dataclass(frozen=True, slots=True)
class ParcelStatusChanged:
    parcel: ParcelInfo
    timestamp: datetime | None


@dataclass(frozen=True, slots=True)
class ParcelShipped:
    parcel: ParcelInfo
    timestamp: datetime | None


@dataclass(frozen=True, slots=True)
class ParcelDelivered:
    parcel: ParcelInfo
    timestamp: datetime | None


@dataclass(frozen=True, slots=True)
class ParcelException:
    parcel: ParcelInfo
    timestamp: datetime | None
    message: str


@dataclass(frozen=True, slots=True)
class UnrecognizedEvent:
    action: str | None
    parcel_id: str | None


CarrierEvent = ParcelStatusChanged | ParcelShipped | ParcelDelivered | ParcelException | UnrecognizedEvent


class MalformedPayload(ValueError):
    pass


def _parse_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)):
            # provider sends epoch milliseconds
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return datetime.fromisoformat(str(value))
    except (ValueError, OverflowError, OSError):
        return None


def _parse_parcel(raw: Any) -> ParcelInfo | None:
    if not isinstance(raw, Mapping) or raw.get("id") in (None, ""):
        return None
    status = raw.get("status") if isinstance(raw.get("status"), Mapping) else {}
    carrier = raw.get("carrier")
    if isinstance(carrier, Mapping):
        carrier = carrier.get("code")
    status_id = status.get("id")
    return ParcelInfo(
        parcel_id=str(raw["id"]),
        status_id=int(status_id) if isinstance(status_id, (int, str)) and str(status_id).isdigit() else None,
        status_message=status.get("message"),
        tracking_number=raw.get("tracking_number"),
        tracking_url=raw.get("tracking_url"),
        carrier=carrier,
    )


def parse_carrier_event(data: Any) -> CarrierEvent:
    if not isinstance(data, Mapping):
        raise MalformedPayload("Carrier webhook body must be a JSON object")

    action = data.get("action")
    parcel = _parse_parcel(data.get("parcel"))
    timestamp = _parse_timestamp(data.get("timestamp"))

    if parcel is None:
        raw_parcel = data.get("parcel")
        parcel_id = raw_parcel.get("id") if isinstance(raw_parcel, Mapping) else None
        return UnrecognizedEvent(action=action, parcel_id=parcel_id)

    if action == "parcel_status_changed":
        return ParcelStatusChanged(parcel=parcel, timestamp=timestamp)
    if action == "parcel_shipped":
        return ParcelShipped(parcel=parcel, timestamp=timestamp)
    if action == "parcel_delivered":
        return ParcelDelivered(parcel=parcel, timestamp=timestamp)
    if action == "parcel_exception":
        message = data.get("message") or parcel.status_message or "Unknown delivery exception"
        return ParcelException(parcel=parcel, timestamp=timestamp, message=str(message))
    return UnrecognizedEvent(action=action, parcel_id=parcel.parcel_id)
