"""Mews Connector API.

Mews batches several events per webhook delivery; only the first event of a
delivery is mapped, the rest arrive again through polling.
"""

from __future__ import annotations

from disputesync.domain.model import AuthScheme, Entity, OutboundAction, RateLimitPolicy
from disputesync.domain.model import SyncEventType as T
from disputesync.domain.providers import (
    FieldRule,
    FieldTable,
    ProviderDescriptor,
    ReadRoute,
    SignatureScheme,
    WebhookSpec,
    WriteRoute,
    capabilities,
)

_FIRST = "Events.0"

_RESERVATION = FieldTable(
    fields={
        "reservation.reservation_id": FieldRule((f"{_FIRST}.EntityId", "data.Id")),
        "reservation.confirmation_number": FieldRule(("data.Number",)),
        "reservation.status": FieldRule(("data.State",), "reservation_status"),
        "reservation.check_in": FieldRule(("data.StartUtc",), "date"),
        "reservation.check_out": FieldRule(("data.EndUtc",), "date"),
        "reservation.guest_id": FieldRule((f"{_FIRST}.CustomerId", "data.CustomerId")),
        "reservation.property_id": FieldRule(("EnterpriseId", "data.EnterpriseId")),
        "reservation.total_amount": FieldRule(("data.TotalAmount.Value",), "amount"),
        "reservation.currency": FieldRule(("data.TotalAmount.Currency",), "currency"),
        "guest.guest_id": FieldRule((f"{_FIRST}.CustomerId", "data.CustomerId")),
        "guest.first_name": FieldRule(("data.Customer.FirstName",), "first_name"),
        "guest.last_name": FieldRule(("data.Customer.LastName",), "last_name"),
        "guest.email": FieldRule(("data.Customer.Email",), "lower"),
        "guest.phone": FieldRule(("data.Customer.Phone",), "phone"),
        "guest.country": FieldRule(("data.Customer.NationalityCode",), "country"),
    }
)

_BILL = FieldTable(
    fields={
        "reservation.reservation_id": FieldRule(("data.ReservationId", f"{_FIRST}.EntityId")),
        "folio.line_id": FieldRule(("Id",)),
        "folio.reservation_id": FieldRule(("ReservationId",)),
        "folio.category": FieldRule(("Type", "Category"), "folio_category"),
        "folio.description": FieldRule(("Name", "Notes")),
        "folio.currency": FieldRule(("Amount.Currency",), "currency"),
        "folio.amount": FieldRule(("Amount.Value",), "amount"),
        "folio.posted_on": FieldRule(("ConsumedUtc", "CreatedUtc"), "date"),
    },
    folio_items=("data.Items", "data.OrderItems"),
)

MEWS = ProviderDescriptor(
    kind="mews",
    display_name="Mews",
    category="pms",
    base_url="https://api.mews.com/api/connector/v1",
    auth_scheme=AuthScheme.API_KEY,
    capabilities=capabilities(
        reservations="r", guests="r", folios="r", rates="r", notes="w", flags="w", alerts="w"
    ),
    rate_limit=RateLimitPolicy(capacity=30, refill_per_minute=120),
    timeout_seconds=20.0,
    default_currency="EUR",
    webhook=WebhookSpec(
        signature_header="X-Mews-Signature",
        scheme=SignatureScheme.HMAC_SHA256_HEX,
        event_id_paths=(f"{_FIRST}.Id",),
        event_type_paths=(f"{_FIRST}.Type", f"{_FIRST}.Event"),
        event_types={
            "ReservationCreated": T.RESERVATION_CREATED,
            "ReservationUpdated": T.RESERVATION_UPDATED,
            "ReservationCanceled": T.RESERVATION_CANCELLED,
            "ReservationStarted": T.GUEST_CHECKED_IN,
            "ReservationProcessed": T.GUEST_CHECKED_OUT,
            "PaymentCreated": T.PAYMENT_RECEIVED,
            "BillUpdated": T.FOLIO_UPDATED,
        },
        occurred_at_paths=("CreatedUtc", "Timestamp"),
        partition_paths=(f"{_FIRST}.EntityId",),
    ),
    field_tables={"folio": _BILL, "*": _RESERVATION},
    reads={
        Entity.RESERVATIONS: ReadRoute(
            path="/reservations/getAll",
            items_path="Reservations",
            id_path="Id",
            created_type=T.RESERVATION_CREATED,
            updated_type=T.RESERVATION_UPDATED,
            since_param="UpdatedUtc.StartUtc",
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/reservations/addNote",
            body={"ReservationId": "reservation_id", "Notes": "note"},
        ),
        OutboundAction.PUSH_FLAG: WriteRoute(
            method="POST",
            path="/customers/addClassification",
            body={"CustomerId": "guest_ref", "Reference": "dispute_id"},
            static={"Classification": "Chargeback"},
        ),
        OutboundAction.PUSH_ALERT: WriteRoute(
            method="POST",
            path="/tasks/add",
            body={"Description": "note", "Name": "dispute_id"},
            static={"DepartmentId": "FrontOffice"},
        ),
    },
)
