"""Dispute case lifecycle.

``transition`` is the only way a case changes status. Every accepted
transition appends exactly one timeline entry; a refused one leaves the case
untouched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from uuid import UUID  # noqa: TC003

from disputesync.domain.errors import IllegalTransition, SubmissionBlocked
from disputesync.domain.model import CaseStatus, TimelineKind

if TYPE_CHECKING:
    from datetime import datetime

    from disputesync.domain.model import DisputeCase, TimelineEvent

ALLOWED_TRANSITIONS: Mapping[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.PENDING: frozenset({CaseStatus.IN_REVIEW, CaseStatus.CANCELLED, CaseStatus.EXPIRED}),
    CaseStatus.IN_REVIEW: frozenset(
        {CaseStatus.SUBMITTED, CaseStatus.CANCELLED, CaseStatus.EXPIRED}
    ),
    CaseStatus.SUBMITTED: frozenset({CaseStatus.WON, CaseStatus.LOST, CaseStatus.EXPIRED}),
}


@dataclass(frozen=True, slots=True)
class CaseTransition:
    """What listeners and the outbound planner learn about a status change.

    ``from_status`` is None for case creation.
    """

    case_id: UUID
    connection_id: str
    external_dispute_id: str
    from_status: CaseStatus | None
    to_status: CaseStatus
    actor: str
    reason: str
    source_connection_id: str | None = None


def can_transition(source: CaseStatus, target: CaseStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def check_transition(case: DisputeCase, target: CaseStatus) -> None:
    source = case.status
    if not can_transition(source, target):
        raise IllegalTransition(source, target)
    if (
        target is CaseStatus.SUBMITTED
        and case.confidence_score is None
        and not case.manual_override
    ):
        raise SubmissionBlocked(
            source,
            target,
            f"Case {case.id} needs a confidence score or manual override before submission",
        )


def transition(
    case: DisputeCase,
    target: CaseStatus,
    *,
    actor: str,
    reason: str,
    at: datetime,
    details: dict[str, Any] | None = None,
) -> TimelineEvent:
    check_transition(case, target)
    source = case.status
    case._set_status(target, at=at)  # noqa: SLF001
    return case.record(
        TimelineKind.TRANSITION,
        actor=actor,
        reason=reason,
        at=at,
        from_status=source,
        to_status=target,
        details=details,
    )
