"""Dispute case aggregate with its evidence references and timeline."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import UUID, uuid4

from disputesync.domain.clock import utcnow
from disputesync.domain.errors import CaseLocked
from disputesync.domain.model.enums import (
    CaseStatus,
    EvidenceType,
    Recommendation,
    TimelineKind,
)

if TYPE_CHECKING:
    from disputesync.domain.model.canonical import DisputeDetails


@dataclass(eq=False, kw_only=True)
class EvidenceItem:
    """Reference to a stored evidence document; binaries live elsewhere."""

    evidence_type: EvidenceType
    reference: str
    source_connection_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    added_at: datetime = field(default_factory=utcnow)


@dataclass(eq=False, kw_only=True)
class TimelineEvent:
    """Immutable audit entry; the only record of why and when a case changed."""

    sequence: int
    kind: TimelineKind
    actor: str
    reason: str
    from_status: CaseStatus | None = None
    to_status: CaseStatus | None = None
    details: dict[str, Any] = field(default_factory=dict[str, Any])
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)


@dataclass(eq=False, kw_only=True)
class DisputeCase:
    # editable only while the case is PENDING or IN_REVIEW
    LOCKED_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"amount", "currency", "guest_ref", "guest_name", "reservation_ref"}
    )
    DETAIL_FIELDS: ClassVar[tuple[str, ...]] = (
        "amount",
        "currency",
        "guest_ref",
        "guest_name",
        "reservation_ref",
        "reason_code",
        "dispute_date",
        "due_date",
        "card_brand",
        "card_present",
        "ip_country",
        "property_id",
        "property_country",
    )

    connection_id: str
    external_dispute_id: str
    id: UUID = field(default_factory=uuid4)
    _status: CaseStatus = CaseStatus.PENDING

    guest_ref: str = ""
    guest_name: str = ""
    reservation_ref: str = ""
    amount: int = 0
    currency: str = ""
    reason_code: str = ""
    dispute_date: str = ""
    due_date: str = ""
    card_brand: str = ""
    card_present: bool | None = None
    ip_country: str = ""
    property_id: str = ""
    property_country: str = ""

    confidence_score: int | None = None
    recommendation: Recommendation | None = None
    manual_override: bool = False

    version: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None

    _evidence: list[EvidenceItem] = field(default_factory=list["EvidenceItem"], repr=False)
    _timeline: list[TimelineEvent] = field(default_factory=list["TimelineEvent"], repr=False)

    @property
    def status(self) -> CaseStatus:
        return self._status

    @property
    def evidence(self) -> tuple[EvidenceItem, ...]:
        return tuple(self._evidence)

    @property
    def timeline(self) -> tuple[TimelineEvent, ...]:
        return tuple(sorted(self._timeline, key=lambda entry: entry.sequence))

    @property
    def evidence_types(self) -> frozenset[EvidenceType]:
        return frozenset(item.evidence_type for item in self._evidence)

    def touch(self, at: datetime) -> None:
        self.updated_at = at

    def _set_status(self, status: CaseStatus, *, at: datetime) -> None:
        """Lifecycle hook for the state machine; nothing else assigns status."""
        self._status = status
        if status.is_terminal:
            self.resolved_at = at
        self.touch(at)

    def record(
        self,
        kind: TimelineKind,
        *,
        actor: str,
        reason: str,
        at: datetime,
        from_status: CaseStatus | None = None,
        to_status: CaseStatus | None = None,
        details: dict[str, Any] | None = None,
    ) -> TimelineEvent:
        next_sequence = max((entry.sequence for entry in self._timeline), default=0) + 1
        entry = TimelineEvent(
            sequence=next_sequence,
            kind=kind,
            actor=actor,
            reason=reason,
            from_status=from_status,
            to_status=to_status,
            details=dict(details or {}),
            created_at=at,
        )
        self._timeline.append(entry)
        self.touch(at)
        return entry

    def apply_details(self, details: DisputeDetails) -> dict[str, tuple[object, object]]:
        """Copy non-empty incoming values onto the case and return what changed.

        Raises ``CaseLocked`` when a locked field would change outside
        PENDING/IN_REVIEW; nothing is applied in that case.
        """

        incoming = {item.name: getattr(details, item.name) for item in fields(details)}
        changes: dict[str, tuple[object, object]] = {}
        for name in self.DETAIL_FIELDS:
            value = incoming.get(name)
            if value is None or value == "" or (value == 0 and not isinstance(value, bool)):
                continue
            current = getattr(self, name)
            if current != value:
                changes[name] = (current, value)

        locked = sorted(name for name in changes if name in self.LOCKED_FIELDS)
        if locked and not self._status.is_editable:
            raise CaseLocked(
                f"Case {self.id} is {self._status}; cannot change {', '.join(locked)}"
            )
        for name, (_, value) in changes.items():
            setattr(self, name, value)
        return changes

    def add_evidence(
        self,
        evidence_type: EvidenceType,
        reference: str,
        *,
        source_connection_id: str | None,
        at: datetime,
    ) -> EvidenceItem | None:
        for item in self._evidence:
            if item.evidence_type is evidence_type and item.reference == reference:
                return None
        item = EvidenceItem(
            evidence_type=evidence_type,
            reference=reference,
            source_connection_id=source_connection_id,
            added_at=at,
        )
        self._evidence.append(item)
        self.touch(at)
        return item
