"""Public domain model surface."""

from __future__ import annotations

from disputesync.domain.model.canonical import (
    CanonicalPayload,
    DisputeDetails,
    DocumentRef,
    FolioLine,
    GuestProfile,
    Rate,
    Reservation,
)
from disputesync.domain.model.case import DisputeCase, EvidenceItem, TimelineEvent
from disputesync.domain.model.connection import (
    CapabilityMatrix,
    Connection,
    CredentialState,
    RateLimitPolicy,
)
from disputesync.domain.model.enums import (
    AI_ACTOR,
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    AlertLevel,
    AlertScope,
    AuthScheme,
    CaseStatus,
    ConnectionStatus,
    Entity,
    EventStatus,
    EvidenceType,
    ManualDecision,
    Operation,
    OutboundAction,
    Recommendation,
    SyncEventType,
    TaskStatus,
    TimelineKind,
)
from disputesync.domain.model.events import CanonicalRecord, SyncEvent
from disputesync.domain.model.tasks import Alert, OutboundTask

__all__ = [  # noqa: RUF022
    # canonical shapes
    "CanonicalPayload",
    "DisputeDetails",
    "DocumentRef",
    "FolioLine",
    "GuestProfile",
    "Rate",
    "Reservation",
    # aggregates
    "Connection",
    "CredentialState",
    "RateLimitPolicy",
    "CapabilityMatrix",
    "DisputeCase",
    "EvidenceItem",
    "TimelineEvent",
    "SyncEvent",
    "CanonicalRecord",
    "OutboundTask",
    "Alert",
    # enums
    "AI_ACTOR",
    "SYSTEM_ACTOR",
    "TERMINAL_STATUSES",
    "AlertLevel",
    "AlertScope",
    "AuthScheme",
    "CaseStatus",
    "ConnectionStatus",
    "Entity",
    "EventStatus",
    "EvidenceType",
    "ManualDecision",
    "Operation",
    "OutboundAction",
    "Recommendation",
    "SyncEventType",
    "TaskStatus",
    "TimelineKind",
]
