"""Chargebacks911 managed dispute service."""

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

_CASE = FieldTable(
    fields={
        "dispute.dispute_id": FieldRule(("data.case_id", "data.chargeback_id", "case_id")),
        "dispute.status": FieldRule(("data.status", "status"), "lower"),
        "dispute.amount": FieldRule(("data.amount", "amount"), "amount"),
        "dispute.currency": FieldRule(("data.currency", "currency"), "currency"),
        "dispute.reason_code": FieldRule(("data.reason_code", "reason_code")),
        "dispute.dispute_date": FieldRule(("data.chargeback_date", "chargeback_date"), "date"),
        "dispute.due_date": FieldRule(("data.due_date", "due_date"), "date"),
        "dispute.card_brand": FieldRule(("data.card_type", "card_type"), "card_brand"),
        "dispute.guest_name": FieldRule(("data.cardholder_name", "cardholder_name"), "full_name"),
        "dispute.guest_ref": FieldRule(("data.customer_id", "customer_id")),
        "dispute.reservation_ref": FieldRule(("data.order_id", "order_id")),
        "dispute.property_id": FieldRule(("data.merchant_id", "merchant_id")),
    }
)

_DOCUMENT = FieldTable(
    fields={
        "document.document_id": FieldRule(("data.document_id",)),
        "document.dispute_id": FieldRule(("data.case_id",)),
        "document.evidence_type": FieldRule(("data.document_type",), "evidence_type"),
        "document.reference": FieldRule(("data.url", "data.document_id")),
    }
)

CHARGEBACKS911 = ProviderDescriptor(
    kind="chargebacks911",
    display_name="Chargebacks911",
    category="dispute",
    base_url="https://api.chargebacks911.com/v1",
    auth_scheme=AuthScheme.API_KEY,
    auth_header="X-API-Key",
    auth_prefix="",
    capabilities=capabilities(disputes="r", documents="r", notes="w", alerts="w", outcomes="w"),
    rate_limit=RateLimitPolicy(capacity=20, refill_per_minute=60),
    timeout_seconds=20.0,
    webhook=WebhookSpec(
        signature_header="X-CB911-Signature",
        scheme=SignatureScheme.HMAC_SHA256_BASE64,
        event_id_paths=("event_id", "id"),
        event_type_paths=("event_type", "type"),
        event_types={
            "case.created": T.DISPUTE_CREATED,
            "case.updated": T.DISPUTE_UPDATED,
            "case.closed": T.DISPUTE_CLOSED,
            "document.added": T.DOCUMENT_UPLOADED,
        },
        occurred_at_paths=("created_at", "timestamp"),
        partition_paths=("data.case_id",),
    ),
    field_tables={"dispute": _CASE, "document": _DOCUMENT},
    reads={
        Entity.DISPUTES: ReadRoute(
            path="/cases",
            items_path="cases",
            id_path="case_id",
            created_type=T.DISPUTE_CREATED,
            updated_type=T.DISPUTE_UPDATED,
            since_param="updated_since",
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/cases/{dispute_id}/notes",
            body={"note": "note", "status": "status", "reference": "case_id"},
        ),
        OutboundAction.PUSH_ALERT: WriteRoute(
            method="POST",
            path="/cases/{dispute_id}/alerts",
            body={"message": "note", "confidence": "confidence_score"},
        ),
        OutboundAction.PUSH_OUTCOME: WriteRoute(
            method="PUT",
            path="/cases/{dispute_id}/outcome",
            body={"outcome": "outcome", "reference": "case_id"},
        ),
    },
)
