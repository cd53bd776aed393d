"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class AuthScheme(StrEnum):
    API_KEY = "api_key"
    OAUTH2_CLIENT_CREDENTIALS = "oauth2_client_credentials"
    OAUTH2_AUTH_CODE = "oauth2_auth_code"
    HMAC_SIGNED = "hmac_signed"

    @property
    def is_static(self) -> bool:
        """Static schemes carry a configured key that never expires."""

        return self in {AuthScheme.API_KEY, AuthScheme.HMAC_SIGNED}


class ConnectionStatus(StrEnum):
    ACTIVE = "active"
    UNAUTHENTICATED = "unauthenticated"
    DISCONNECTED = "disconnected"


class Entity(StrEnum):
    """Entities a provider may expose for reading or accept for writing."""

    RESERVATIONS = "reservations"
    GUESTS = "guests"
    FOLIOS = "folios"
    RATES = "rates"
    DISPUTES = "disputes"
    DOCUMENTS = "documents"
    NOTES = "notes"
    FLAGS = "flags"
    ALERTS = "alerts"
    OUTCOMES = "outcomes"


class Operation(StrEnum):
    READ = "read"
    WRITE = "write"


class SyncEventType(StrEnum):
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_UPDATED = "reservation.updated"
    RESERVATION_CANCELLED = "reservation.cancelled"
    GUEST_CHECKED_IN = "guest.checked_in"
    GUEST_CHECKED_OUT = "guest.checked_out"
    PAYMENT_RECEIVED = "payment.received"
    PAYMENT_REFUNDED = "payment.refunded"
    FOLIO_UPDATED = "folio.updated"
    DOCUMENT_UPLOADED = "document.uploaded"
    DISPUTE_CREATED = "dispute.created"
    DISPUTE_UPDATED = "dispute.updated"
    DISPUTE_CLOSED = "dispute.closed"

    @property
    def family(self) -> str:
        return self.value.split(".", 1)[0]


class EventStatus(StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"
    IGNORED = "ignored"


class CaseStatus(StrEnum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    SUBMITTED = "SUBMITTED"
    WON = "WON"
    LOST = "LOST"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_editable(self) -> bool:
        return self in {CaseStatus.PENDING, CaseStatus.IN_REVIEW}


TERMINAL_STATUSES = frozenset(
    {CaseStatus.WON, CaseStatus.LOST, CaseStatus.EXPIRED, CaseStatus.CANCELLED}
)


class Recommendation(StrEnum):
    AUTO_SUBMIT = "AUTO_SUBMIT"
    REVIEW_RECOMMENDED = "REVIEW_RECOMMENDED"
    GATHER_MORE_EVIDENCE = "GATHER_MORE_EVIDENCE"
    UNLIKELY_TO_WIN = "UNLIKELY_TO_WIN"


class ManualDecision(StrEnum):
    SUBMIT = "SUBMIT"
    CANCEL = "CANCEL"
    WON = "WON"
    LOST = "LOST"


class EvidenceType(StrEnum):
    ID_SCAN = "ID_SCAN"
    AUTH_SIGNATURE = "AUTH_SIGNATURE"
    CHECKOUT_SIGNATURE = "CHECKOUT_SIGNATURE"
    FOLIO = "FOLIO"
    RESERVATION_CONFIRMATION = "RESERVATION_CONFIRMATION"
    CANCELLATION_POLICY = "CANCELLATION_POLICY"
    KEY_CARD_LOG = "KEY_CARD_LOG"
    CCTV_FOOTAGE = "CCTV_FOOTAGE"
    CORRESPONDENCE = "CORRESPONDENCE"
    OTHER = "OTHER"


class TimelineKind(StrEnum):
    CREATED = "created"
    TRANSITION = "transition"
    UPDATE = "update"
    INFO = "info"
    EVIDENCE = "evidence"
    SCORE = "score"
    ALERT = "alert"


class OutboundAction(StrEnum):
    PUSH_NOTE = "push_note"
    PUSH_FLAG = "push_flag"
    PUSH_ALERT = "push_alert"
    PUSH_OUTCOME = "push_outcome"


class TaskStatus(StrEnum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # awaiting retry
    DEAD = "dead"
    CANCELLED = "cancelled"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.SUCCEEDED, TaskStatus.DEAD, TaskStatus.CANCELLED}


class AlertScope(StrEnum):
    CASE = "case"
    CONNECTION = "connection"
    TASK = "task"


class AlertLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


SYSTEM_ACTOR = "system"
AI_ACTOR = "ai"
