"""Oracle OPERA Cloud property APIs."""

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

_PROFILE = "data.reservationGuest"

_RESERVATION = FieldTable(
    fields={
        "reservation.reservation_id": FieldRule(("data.reservationId", "data.id")),
        "reservation.confirmation_number": FieldRule(("data.confirmationNumber",)),
        "reservation.status": FieldRule(("data.reservationStatus",), "reservation_status"),
        "reservation.check_in": FieldRule(("data.arrivalDate",), "date"),
        "reservation.check_out": FieldRule(("data.departureDate",), "date"),
        "reservation.room_number": FieldRule(("data.roomId", "data.roomNumber")),
        "reservation.guest_id": FieldRule((f"{_PROFILE}.profileId", "data.profileId")),
        "reservation.property_id": FieldRule(("hotelId", "data.hotelId")),
        "reservation.total_amount": FieldRule(("data.totalAmount.amount",), "amount"),
        "reservation.currency": FieldRule(("data.totalAmount.currencyCode",), "currency"),
        "guest.guest_id": FieldRule((f"{_PROFILE}.profileId", "data.profileId")),
        "guest.first_name": FieldRule((f"{_PROFILE}.givenName",), "first_name"),
        "guest.last_name": FieldRule((f"{_PROFILE}.surname",), "last_name"),
        "guest.full_name": FieldRule((f"{_PROFILE}.fullName", "data.guestName"), "full_name"),
        "guest.email": FieldRule((f"{_PROFILE}.email",), "lower"),
        "guest.phone": FieldRule((f"{_PROFILE}.phoneNumber",), "phone"),
        "guest.country": FieldRule((f"{_PROFILE}.countryCode",), "country"),
        "rate.rate_code": FieldRule(("data.ratePlanCode", "data.rateCode")),
        "rate.amount": FieldRule(("data.rateAmount.amount",), "amount"),
        "rate.currency": FieldRule(("data.rateAmount.currencyCode",), "currency"),
    }
)

_FOLIO = FieldTable(
    fields={
        "reservation.reservation_id": FieldRule(("data.reservationId",)),
        "folio.line_id": FieldRule(("transactionNo", "id")),
        "folio.reservation_id": FieldRule(("reservationId",)),
        "folio.category": FieldRule(("transactionCode", "transactionType"), "folio_category"),
        "folio.description": FieldRule(("description",)),
        "folio.currency": FieldRule(("amount.currencyCode",), "currency"),
        "folio.amount": FieldRule(("amount.amount", "postedAmount"), "amount"),
        "folio.posted_on": FieldRule(("transactionDate", "postingDate"), "date"),
    },
    folio_items=("data.postings", "data.folioWindows.0.postings"),
)

OPERA_CLOUD = ProviderDescriptor(
    kind="opera_cloud",
    display_name="OPERA Cloud",
    category="pms",
    base_url="https://api.oracle.com/opera/v1",
    auth_scheme=AuthScheme.OAUTH2_AUTH_CODE,
    capabilities=capabilities(
        reservations="r", guests="r", folios="r", rates="r", notes="w", flags="w", alerts="w"
    ),
    rate_limit=RateLimitPolicy(capacity=20, refill_per_minute=60),
    timeout_seconds=30.0,
    token_endpoint=TokenEndpoint(url="https://login.oracle.com/oauth2/token"),
    webhook=WebhookSpec(
        signature_header="X-Opera-Signature",
        scheme=SignatureScheme.HMAC_SHA256_HEX,
        event_id_paths=("eventId", "id"),
        event_type_paths=("eventType", "event", "type"),
        event_types={
            "RESERVATION_CREATED": T.RESERVATION_CREATED,
            "RESERVATION_UPDATED": T.RESERVATION_UPDATED,
            "RESERVATION_CANCELLED": T.RESERVATION_CANCELLED,
            "CHECKIN": T.GUEST_CHECKED_IN,
            "CHECKOUT": T.GUEST_CHECKED_OUT,
            "PAYMENT": T.PAYMENT_RECEIVED,
            "FOLIO_UPDATED": T.FOLIO_UPDATED,
        },
        occurred_at_paths=("timestamp", "eventTime"),
        partition_paths=("data.reservationId",),
    ),
    field_tables={"folio": _FOLIO, "*": _RESERVATION},
    reads={
        Entity.RESERVATIONS: ReadRoute(
            path="/rsv/v1/reservations",
            items_path="reservations.reservationInfo",
            id_path="reservationId",
            created_type=T.RESERVATION_CREATED,
            updated_type=T.RESERVATION_UPDATED,
            since_param="lastModifiedSince",
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/rsv/v1/comments",
            body={"reservationId": "reservation_id", "comment.text": "note"},
            static={"comment.type": "RESERVATION", "comment.internal": True},
        ),
        OutboundAction.PUSH_FLAG: WriteRoute(
            method="POST",
            path="/crm/v1/alerts",
            body={"profileId": "guest_ref", "reference": "dispute_id", "description": "note"},
            static={"code": "CHARGEBACK", "area": "CHECKIN"},
        ),
        OutboundAction.PUSH_ALERT: WriteRoute(
            method="POST",
            path="/rsv/v1/traces",
            body={"reservationId": "reservation_id", "traceText": "note"},
            static={"department": "FO"},
        ),
    },
    cache_reads=True,
)
