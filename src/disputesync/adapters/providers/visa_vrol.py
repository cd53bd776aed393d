"""Visa Resolve Online (VROL) dispute cases."""

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


def _either(*names: str) -> tuple[str, ...]:
    # webhooks nest the case under "data"; polled items wrap it the same way
    return tuple(f"data.{name}" for name in names) + names


_CASE = FieldTable(
    fields={
        "dispute.dispute_id": FieldRule(_either("disputeId", "caseId", "vrolCaseNumber", "id")),
        "dispute.status": FieldRule(_either("status", "caseStatus"), "lower"),
        "dispute.amount": FieldRule(
            _either("amount", "disputeAmount", "transactionAmount"), "amount"
        ),
        "dispute.currency": FieldRule(_either("currency", "transactionCurrency"), "currency"),
        "dispute.reason_code": FieldRule(_either("reasonCode", "conditionCode")),
        "dispute.dispute_date": FieldRule(
            _either("disputeDate", "chargebackDate", "createdAt"), "date"
        ),
        "dispute.due_date": FieldRule(_either("responseDeadline", "dueDate"), "date"),
        "dispute.guest_name": FieldRule(_either("cardholderName", "guestName"), "full_name"),
        "dispute.reservation_ref": FieldRule(_either("merchantReference", "transactionId")),
        "dispute.property_id": FieldRule(_either("merchantId",)),
        "dispute.card_present": FieldRule(_either("cardPresent", "posEntryCardPresent"), "bool"),
        "dispute.ip_country": FieldRule(_either("ipCountry",), "country"),
        "dispute.property_country": FieldRule(_either("merchantCountry",), "country"),
    }
)

VISA_VROL = ProviderDescriptor(
    kind="visa_vrol",
    display_name="Visa Resolve Online",
    category="dispute",
    base_url="https://sandbox.api.visa.com",
    auth_scheme=AuthScheme.OAUTH2_CLIENT_CREDENTIALS,
    capabilities=capabilities(disputes="r", documents="r", notes="w", outcomes="w"),
    rate_limit=RateLimitPolicy(capacity=15, refill_per_minute=60),
    timeout_seconds=30.0,
    token_endpoint=TokenEndpoint(url="/oauth2/token"),
    webhook=WebhookSpec(
        signature_header="X-Visa-Signature",
        scheme=SignatureScheme.HMAC_SHA256_HEX,
        event_id_paths=("webhookId", "eventId", "id"),
        event_type_paths=("eventType", "event"),
        event_types={
            "dispute.created": T.DISPUTE_CREATED,
            "dispute.updated": T.DISPUTE_UPDATED,
            "dispute.status_changed": T.DISPUTE_UPDATED,
            "pre_arbitration.initiated": T.DISPUTE_UPDATED,
            "arbitration.initiated": T.DISPUTE_UPDATED,
            "representment.accepted": T.DISPUTE_CLOSED,
            "representment.declined": T.DISPUTE_CLOSED,
        },
        occurred_at_paths=("timestamp",),
        partition_paths=("caseId", "disputeId", "data.disputeId"),
    ),
    field_tables={"dispute": _CASE},
    reads={
        Entity.DISPUTES: ReadRoute(
            path="/visadirect/v1/disputes",
            items_path="disputes",
            id_path="disputeId",
            created_type=T.DISPUTE_CREATED,
            updated_type=T.DISPUTE_UPDATED,
            since_param="startDate",
        ),
    },
    writes={
        OutboundAction.PUSH_NOTE: WriteRoute(
            method="POST",
            path="/visadirect/v1/disputes/{dispute_id}/notes",
            body={"note": "note", "merchantReference": "case_id", "status": "status"},
        ),
        OutboundAction.PUSH_OUTCOME: WriteRoute(
            method="POST",
            path="/visadirect/v1/disputes/{dispute_id}/notes",
            body={"note": "note", "outcome": "outcome", "merchantReference": "case_id"},
            static={"category": "OUTCOME"},
        ),
    },
)
