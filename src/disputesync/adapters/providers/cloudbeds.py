"""Cloudbeds PMS."""

from __future__ import annotations

from disputesync.domain.model import AuthScheme, Entity, OutboundAction, RateLimitPolicy
from disputesync.domain.model import SyncEventType as T
from disputesync.domain.providers import (
    FieldRule,
    FieldTable,
    ProviderDescriptor,
    ReadRoute,
    SignatureScheme,
    TokenEndpoint,
    WebhookSpec,
    WriteRoute,
    capabilities,
)

_RESERVATION = FieldTable(
    fields={
        "reservation.reservation_id": FieldRule(("reservationID", "data.reservationID")),
        "reservation.status": FieldRule(("status", "data.status"), "reservation_status"),
        "reservation.check_in": FieldRule(("startDate", "data.startDate"), "date"),
        "reservation.check_out": FieldRule(("endDate", "data.endDate"), "date"),
        "reservation.guest_id": FieldRule(("guestID", "data.guestID")),
        "reservation.property_id": FieldRule(("propertyID", "data.propertyID")),
        "reservation.total_amount": FieldRule(("data.total", "total"), "amount"),
        "reservation.currency": FieldRule(("data.currency", "currency"), "currency"),
        "guest.guest_id": FieldRule(("guestID", "data.guestID")),
        "guest.full_name": FieldRule(("guestName", "data.guestName"), "full_name"),
        "guest.email": FieldRule(("guestEmail", "data.guestEmail"), "lower"),
        "guest.phone": FieldRule(("guestPhone", "data.guestPhone"), "phone"),
        "guest.country": FieldRule(("guestCountry", "data.guestCountry"), "country"),
    }
)

CLOUDBEDS = ProviderDescriptor(
    kind="cloudbeds",
    display_name="Cloudbeds",
    category="pms",
    base_url="https://api.cloudbeds.com/api/v1.1",
    auth_scheme=AuthScheme.OAUTH2_AUTH_CODE,
    capabilities=capabilities(reservations="r", guests="r", notes="w", flags="w"),
    rate_limit=RateLimitPolicy(capacity=20, refill_per_minute=100),
    timeout_seconds=20.0,
    token_endpoint=TokenEndpoint(url="https://hotels.cloudbeds.com/api/v1.1/access_token"),
    webhook=WebhookSpec(
        signature_header="X-Cloudbeds-Signature",
        scheme=SignatureScheme.HMAC_SHA256_BASE64,
        event_id_paths=("eventID", "event_id"),
        event_type_paths=("event",),
        event_types={
            "reservation/created": T.RESERVATION_CREATED,
            "reservation/status_changed": T.RESERVATION_UPDATED,
            "reservation/dates_changed": T.RESERVATION_UPDATED,
            "reservation/deleted": T.RESERVATION_CANCELLED,
            "reservation/checked_in": T.GUEST_CHECKED_IN,
            "reservation/checked_out": T.GUEST_CHECKED_OUT,
        },
        occurred_at_paths=("timestamp",),
        partition_paths=("reservationID",),
    ),
    field_tables={"*": _RESERVATION},
    reads={
        Entity.RESERVATIONS: ReadRoute(
            path="/getReservations",
            items_path="data",
            id_path="reservationID",
            created_type=T.RESERVATION_CREATED,
            updated_type=T.RESERVATION_UPDATED,
            since_param="modifiedFrom",
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/postReservationNote",
            body={"reservationID": "reservation_id", "reservationNote": "note"},
        ),
        OutboundAction.PUSH_FLAG: WriteRoute(
            method="POST",
            path="/postGuestNote",
            body={"guestID": "guest_ref", "guestNote": "note"},
        ),
    },
)
