"""Verifi (Visa CDRN / Order Insight) pre-dispute alerts."""

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

_ALERT = FieldTable(
    fields={
        "dispute.dispute_id": FieldRule(("alertId", "data.alertId", "caseId", "data.caseId")),
        "dispute.status": FieldRule(("status", "data.status"), "lower"),
        "dispute.amount": FieldRule(("amount", "data.amount", "transactionAmount"), "amount"),
        "dispute.currency": FieldRule(("currency", "data.currency"), "currency"),
        "dispute.reason_code": FieldRule(("reasonCode", "data.reasonCode")),
        "dispute.dispute_date": FieldRule(("alertDate", "data.alertDate", "createdAt"), "date"),
        "dispute.due_date": FieldRule(("responseDeadline", "data.responseDeadline"), "date"),
        "dispute.card_brand": FieldRule(("cardBrand", "data.cardBrand"), "card_brand"),
        "dispute.guest_name": FieldRule(("cardholderName", "data.cardholderName"), "full_name"),
        "dispute.reservation_ref": FieldRule(("merchantOrderId", "data.merchantOrderId")),
        "dispute.property_id": FieldRule(("merchantId", "data.merchantId")),
    }
)

_DOCUMENT = FieldTable(
    fields={
        "document.document_id": FieldRule(("documentId", "data.documentId")),
        "document.dispute_id": FieldRule(("alertId", "data.alertId")),
        "document.evidence_type": FieldRule(("documentType", "data.documentType"), "evidence_type"),
        "document.reference": FieldRule(("documentUrl", "data.documentUrl", "documentId")),
    }
)

VERIFI = ProviderDescriptor(
    kind="verifi",
    display_name="Verifi",
    category="dispute",
    base_url="https://api.verifi.com/v3",
    auth_scheme=AuthScheme.OAUTH2_CLIENT_CREDENTIALS,
    capabilities=capabilities(disputes="r", documents="r", alerts="w", outcomes="w"),
    rate_limit=RateLimitPolicy(capacity=20, refill_per_minute=100),
    timeout_seconds=15.0,
    token_endpoint=TokenEndpoint(url="/oauth/token", scope="alerts"),
    webhook=WebhookSpec(
        signature_header="X-Verifi-Signature",
        scheme=SignatureScheme.HMAC_SHA256_HEX,
        event_id_paths=("eventId", "id"),
        event_type_paths=("eventType", "event"),
        event_types={
            "alert.created": T.DISPUTE_CREATED,
            "alert.updated": T.DISPUTE_UPDATED,
            "alert.closed": T.DISPUTE_CLOSED,
            "document.uploaded": T.DOCUMENT_UPLOADED,
        },
        occurred_at_paths=("timestamp", "createdAt"),
        partition_paths=("alertId", "data.alertId"),
    ),
    field_tables={"dispute": _ALERT, "document": _DOCUMENT},
    reads={
        Entity.DISPUTES: ReadRoute(
            path="/alerts",
            items_path="alerts",
            id_path="alertId",
            created_type=T.DISPUTE_CREATED,
            updated_type=T.DISPUTE_UPDATED,
            since_param="updatedSince",
        ),
    },
    writes={
        OutboundAction.PUSH_ALERT: WriteRoute(
            method="POST",
            path="/alerts/{dispute_id}/acknowledge",
            body={"merchantReference": "case_id", "comment": "note"},
        ),
        OutboundAction.PUSH_OUTCOME: WriteRoute(
            method="POST",
            path="/alerts/{dispute_id}/outcome",
            body={"outcome": "outcome", "merchantReference": "case_id"},
        ),
    },
)
