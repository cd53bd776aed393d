"""Stripe: disputes arrive as charge/dispute webhooks signed with ``Stripe-Signature``."""

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

_OBJECT = "data.object"

_CHARGE = FieldTable(
    fields={
        "dispute.dispute_id": FieldRule((f"{_OBJECT}.dispute",)),
        "dispute.amount": FieldRule((f"{_OBJECT}.amount",), "minor_units"),
        "dispute.currency": FieldRule((f"{_OBJECT}.currency",), "currency"),
        "dispute.reason_code": FieldRule((f"{_OBJECT}.reason", f"{_OBJECT}.failure_code")),
        "dispute.due_date": FieldRule((f"{_OBJECT}.evidence_details.due_by",), "date"),
        "dispute.dispute_date": FieldRule((f"{_OBJECT}.created", "created"), "date"),
        "dispute.card_brand": FieldRule(
            (f"{_OBJECT}.payment_method_details.card.brand",), "card_brand"
        ),
        "dispute.ip_country": FieldRule(
            (f"{_OBJECT}.payment_method_details.card.country",), "country"
        ),
        "dispute.guest_ref": FieldRule((f"{_OBJECT}.customer",)),
        "dispute.guest_name": FieldRule((f"{_OBJECT}.billing_details.name",), "full_name"),
        "dispute.reservation_ref": FieldRule((f"{_OBJECT}.metadata.reservation_id",)),
        "dispute.property_id": FieldRule((f"{_OBJECT}.metadata.property_id",)),
        "guest.guest_id": FieldRule((f"{_OBJECT}.customer",)),
        "guest.full_name": FieldRule((f"{_OBJECT}.billing_details.name",), "full_name"),
        "guest.email": FieldRule((f"{_OBJECT}.billing_details.email",), "lower"),
    }
)

_DISPUTE = FieldTable(
    fields={
        "dispute.dispute_id": FieldRule((f"{_OBJECT}.id", "data.id")),
        "dispute.status": FieldRule((f"{_OBJECT}.status", "data.status"), "lower"),
        "dispute.amount": FieldRule((f"{_OBJECT}.amount", "data.amount"), "minor_units"),
        "dispute.currency": FieldRule((f"{_OBJECT}.currency", "data.currency"), "currency"),
        "dispute.reason_code": FieldRule((f"{_OBJECT}.reason", "data.reason")),
        "dispute.dispute_date": FieldRule((f"{_OBJECT}.created", "data.created"), "date"),
        "dispute.due_date": FieldRule(
            (f"{_OBJECT}.evidence_details.due_by", "data.evidence_details.due_by"), "date"
        ),
        "dispute.guest_ref": FieldRule((f"{_OBJECT}.metadata.guest_id", "data.metadata.guest_id")),
        "dispute.reservation_ref": FieldRule(
            (f"{_OBJECT}.metadata.reservation_id", "data.metadata.reservation_id")
        ),
        "dispute.property_id": FieldRule(
            (f"{_OBJECT}.metadata.property_id", "data.metadata.property_id")
        ),
    }
)

STRIPE = ProviderDescriptor(
    kind="stripe",
    display_name="Stripe Disputes",
    category="dispute",
    base_url="https://api.stripe.com",
    auth_scheme=AuthScheme.API_KEY,
    capabilities=capabilities(disputes="r", documents="r", notes="w", outcomes="w"),
    rate_limit=RateLimitPolicy(capacity=25, refill_per_minute=100),
    timeout_seconds=20.0,
    webhook=WebhookSpec(
        signature_header="Stripe-Signature",
        scheme=SignatureScheme.STRIPE_V1,
        event_id_paths=("id",),
        event_type_paths=("type",),
        event_types={
            "charge.dispute.created": T.DISPUTE_CREATED,
            "charge.dispute.updated": T.DISPUTE_UPDATED,
            "charge.dispute.closed": T.DISPUTE_CLOSED,
            "charge.succeeded": T.PAYMENT_RECEIVED,
            "payment_intent.succeeded": T.PAYMENT_RECEIVED,
            "charge.refunded": T.PAYMENT_REFUNDED,
        },
        occurred_at_paths=("created",),
        partition_paths=(f"{_OBJECT}.dispute", f"{_OBJECT}.id"),
    ),
    field_tables={"payment": _CHARGE, "dispute": _DISPUTE},
    reads={
        Entity.DISPUTES: ReadRoute(
            path="/v1/disputes",
            items_path="data",
            id_path="id",
            created_type=T.DISPUTE_CREATED,
            updated_type=T.DISPUTE_UPDATED,
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/v1/disputes/{dispute_id}",
            body={"metadata.disputesync_note": "note", "metadata.disputesync_case": "case_id"},
        ),
        OutboundAction.PUSH_OUTCOME: WriteRoute(
            method="POST",
            path="/v1/disputes/{dispute_id}",
            body={"metadata.disputesync_outcome": "outcome"},
        ),
    },
)
