"""Signed provider webhook bodies used across the ingestion tests."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from disputesync.adapters.signatures import sign_body, stripe_signature
from disputesync.domain.providers import SignatureScheme

if TYPE_CHECKING:
    from datetime import datetime


def stripe_charge_event(
    event_id: str = "evt_1",
    *,
    dispute_id: str = "dp_42",
    amount: int = 48750,
    currency: str = "usd",
    reason: str = "fraudulent",
    due_by: str = "2026-03-01",
    **extra: Any,
) -> dict[str, Any]:
    charge: dict[str, Any] = {
        "id": "ch_9",
        "dispute": dispute_id,
        "amount": amount,
        "currency": currency,
        "reason": reason,
        "evidence_details": {"due_by": due_by},
    }
    charge.update(extra)
    return {"id": event_id, "type": "charge.succeeded", "data": {"object": charge}}


def stripe_dispute_event(
    event_id: str,
    *,
    event_type: str = "charge.dispute.updated",
    dispute_id: str = "dp_42",
    status: str = "needs_response",
    amount: int = 48750,
    **extra: Any,
) -> dict[str, Any]:
    dispute: dict[str, Any] = {
        "id": dispute_id,
        "status": status,
        "amount": amount,
        "currency": "usd",
        "reason": "fraudulent",
    }
    dispute.update(extra)
    return {"id": event_id, "type": event_type, "data": {"object": dispute}}


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def stripe_headers(secret: str, body: bytes, *, at: datetime) -> dict[str, str]:
    return {"Stripe-Signature": stripe_signature(secret, body, timestamp=int(at.timestamp()))}


def mews_reservation_event(
    event_id: str = "mews-evt-1",
    *,
    reservation_id: str = "res-77",
    event_type: str = "ReservationUpdated",
) -> dict[str, Any]:
    return {
        "EnterpriseId": "ent-1",
        "Events": [
            {
                "Id": event_id,
                "Type": event_type,
                "EntityId": reservation_id,
                "CustomerId": "cust-5",
            }
        ],
    }


def mews_headers(secret: str, body: bytes) -> dict[str, str]:
    return {"X-Mews-Signature": sign_body(secret, body, SignatureScheme.HMAC_SHA256_HEX)}
