"""Case service: create-or-update cases from canonical events and drive their lifecycle.

Every write runs inside one unit of work and is retried when a concurrent
writer bumped the case version first. Outbound fan-out is planned inside the
same unit of work; transition listeners only run after a successful commit.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from disputesync.domain.alerts import raise_alert
from disputesync.domain.clock import Clock, utcnow
from disputesync.domain.errors import (
    CaseLocked,
    ConcurrencyConflict,
    UnknownCase,
)
from disputesync.domain.model import (
    AI_ACTOR,
    SYSTEM_ACTOR,
    AlertScope,
    CaseStatus,
    DisputeCase,
    Entity,
    EvidenceType,
    ManualDecision,
    Recommendation,
    TimelineKind,
)
from disputesync.domain.scoring import DEFAULT_TABLES, ScoringContext, ScoringTables, score
from disputesync.domain.state_machine import CaseTransition, can_transition, transition

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from disputesync.domain.model import CanonicalPayload
    from disputesync.domain.ports import SyncRepositories, SyncUnitOfWork
    from disputesync.domain.scoring import ScoreBreakdown

log = getLogger(__name__)

type TransitionListener = Callable[[CaseTransition], None]
type Outbox = Callable[[SyncRepositories, DisputeCase, CaseTransition], None]

_OUTCOME_STATUSES: dict[str, CaseStatus] = {
    "won": CaseStatus.WON,
    "lost": CaseStatus.LOST,
    "expired": CaseStatus.EXPIRED,
    "cancelled": CaseStatus.CANCELLED,
    "canceled": CaseStatus.CANCELLED,
}

# PMS event families that document a reservation a dispute refers to
_PMS_EVIDENCE: dict[str, tuple[EvidenceType, Entity]] = {
    "reservation": (EvidenceType.RESERVATION_CONFIRMATION, Entity.RESERVATIONS),
    "folio": (EvidenceType.FOLIO, Entity.FOLIOS),
}


@dataclass(slots=True)
class _Staged:
    transitions: list[CaseTransition] = field(default_factory=list[CaseTransition])


@dataclass(frozen=True, slots=True)
class CaseUpdate:
    case: DisputeCase | None
    created: bool = False
    changed: tuple[str, ...] = ()
    transitions: tuple[CaseTransition, ...] = ()
    evidence_cases: tuple[UUID, ...] = ()


class CaseService:
    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        tables: ScoringTables = DEFAULT_TABLES,
        outbox: Outbox | None = None,
        write_retries: int = 3,
        clock: Clock = utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._tables = tables
        self._outbox = outbox
        self._write_retries = max(write_retries, 1)
        self._clock = clock
        self._listeners: list[TransitionListener] = []

    # collaborator interface -------------------------------------------------

    def on_case_transition(self, callback: TransitionListener) -> Callable[[], None]:
        """Register ``callback`` for committed transitions; returns an unsubscribe function."""

        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def set_outbox(self, outbox: Outbox | None) -> None:
        self._outbox = outbox

    def get_case(self, case_id: UUID) -> DisputeCase | None:
        with self._uow_factory() as uow:
            return uow.repositories.cases.get(case_id)

    def list_cases_by_status(self, status: CaseStatus) -> Sequence[DisputeCase]:
        with self._uow_factory() as uow:
            return list(uow.repositories.cases.list_by_status(status))

    def submit_manual_override(
        self,
        case_id: UUID,
        decision: ManualDecision,
        *,
        actor: str = "user",
        reason: str = "",
    ) -> DisputeCase:
        def work(repositories: SyncRepositories, staged: _Staged) -> CaseUpdate:
            case = self._require(repositories, case_id)
            now = self._clock()
            note = reason or f"Manual decision {decision}"
            if decision is ManualDecision.SUBMIT:
                case.manual_override = True
                if case.status is CaseStatus.PENDING:
                    self._transition(
                        repositories, staged, case, CaseStatus.IN_REVIEW,
                        actor=actor, reason=note, at=now,
                    )  # fmt: skip
                self._transition(
                    repositories, staged, case, CaseStatus.SUBMITTED,
                    actor=actor, reason=note, at=now,
                )  # fmt: skip
            else:
                target = {
                    ManualDecision.CANCEL: CaseStatus.CANCELLED,
                    ManualDecision.WON: CaseStatus.WON,
                    ManualDecision.LOST: CaseStatus.LOST,
                }[decision]
                self._transition(
                    repositories, staged, case, target, actor=actor, reason=note, at=now
                )
            return CaseUpdate(case=case)

        update = self._run(work)
        assert update.case is not None
        return update.case

    # inbound ------------------------------------------------------------------

    def apply_event(
        self,
        source_connection_id: str,
        event_type: str,
        payload: CanonicalPayload,
    ) -> CaseUpdate:
        """Create or update the case an inbound canonical payload refers to."""

        dispute_ref = payload.dispute.dispute_id or payload.document.dispute_id
        if not dispute_ref:
            return self._collect_reservation_evidence(source_connection_id, event_type, payload)

        def work(repositories: SyncRepositories, staged: _Staged) -> CaseUpdate:
            now = self._clock()
            case = repositories.cases.get_by_external_id(
                connection_id=source_connection_id, external_dispute_id=dispute_ref
            )
            if case is None:
                if not payload.is_dispute:
                    log.warning(
                        "%s %s refers to unknown dispute %s; nothing to attach to",
                        source_connection_id,
                        event_type,
                        dispute_ref,
                    )
                    return CaseUpdate(case=None)
                case = self._create(repositories, staged, source_connection_id, payload, now=now)
                self._attach_document(case, payload, source_connection_id, now=now)
                self._collect_from_store(repositories, case, now=now)
                self._rescore(repositories, staged, case, now=now)
                return CaseUpdate(
                    case=case, created=True, transitions=tuple(staged.transitions)
                )

            if case.status.is_terminal:
                case.record(
                    TimelineKind.INFO,
                    actor=SYSTEM_ACTOR,
                    reason=f"{event_type} received after case closed as {case.status}",
                    at=now,
                    details={"source": source_connection_id},
                )
                return CaseUpdate(case=case)

            changed = self._apply_details(case, payload, source_connection_id, event_type, now=now)
            if self._attach_document(case, payload, source_connection_id, now=now):
                changed = (*changed, "evidence")
            self._apply_reported_outcome(
                repositories, staged, case, payload, source_connection_id, now=now
            )
            if changed and not case.status.is_terminal:
                self._rescore(repositories, staged, case, now=now)
            return CaseUpdate(case=case, changed=changed, transitions=tuple(staged.transitions))

        return self._run(work)

    def add_evidence(
        self,
        case_id: UUID,
        evidence_type: EvidenceType,
        reference: str,
        *,
        source_connection_id: str | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> DisputeCase:
        def work(repositories: SyncRepositories, staged: _Staged) -> CaseUpdate:
            case = self._require(repositories, case_id)
            now = self._clock()
            item = case.add_evidence(
                evidence_type, reference, source_connection_id=source_connection_id, at=now
            )
            if item is not None:
                case.record(
                    TimelineKind.EVIDENCE,
                    actor=actor,
                    reason=f"Evidence {evidence_type} added",
                    at=now,
                    details={"reference": reference},
                )
                if not case.status.is_terminal:
                    self._rescore(repositories, staged, case, now=now)
            return CaseUpdate(case=case)

        update = self._run(work)
        assert update.case is not None
        return update.case

    def rescore(self, case_id: UUID) -> DisputeCase:
        def work(repositories: SyncRepositories, staged: _Staged) -> CaseUpdate:
            case = self._require(repositories, case_id)
            if not case.status.is_terminal:
                self._rescore(repositories, staged, case, now=self._clock())
            return CaseUpdate(case=case)

        update = self._run(work)
        assert update.case is not None
        return update.case

    def sweep(self) -> list[UUID]:
        """Expire open cases whose due date has passed."""

        now = self._clock()
        with self._uow_factory() as uow:
            today = now.date().isoformat()
            overdue = [case.id for case in uow.repositories.cases.list_overdue(today=today)]

        expired: list[UUID] = []
        for case_id in overdue:

            def work(
                repositories: SyncRepositories, staged: _Staged, case_id: UUID = case_id
            ) -> CaseUpdate:
                case = self._require(repositories, case_id)
                if case.status.is_terminal:
                    return CaseUpdate(case=case)
                self._transition(
                    repositories, staged, case, CaseStatus.EXPIRED,
                    actor=SYSTEM_ACTOR, reason=f"Due date {case.due_date} passed", at=now,
                )  # fmt: skip
                raise_alert(
                    repositories,
                    AlertScope.CASE,
                    str(case.id),
                    f"Dispute {case.external_dispute_id} expired unanswered (due {case.due_date})",
                    at=now,
                )
                return CaseUpdate(case=case, transitions=tuple(staged.transitions))

            update = self._run(work)
            if update.transitions:
                expired.append(case_id)
        if expired:
            log.info("Sweep expired %d case(s)", len(expired))
        return expired

    # internals ----------------------------------------------------------------

    def _run(self, work: Callable[[SyncRepositories, _Staged], CaseUpdate]) -> CaseUpdate:
        for attempt in range(1, self._write_retries + 1):
            staged = _Staged()
            try:
                with self._uow_factory() as uow:
                    update = work(uow.repositories, staged)
                    uow.commit()
            except ConcurrencyConflict:
                if attempt == self._write_retries:
                    raise
                log.info("Case write conflicted; retrying (%d/%d)", attempt, self._write_retries)
                continue
            self._notify(staged.transitions)
            return update
        raise AssertionError("unreachable")

    def _notify(self, transitions: list[CaseTransition]) -> None:
        for item in transitions:
            for listener in list(self._listeners):
                try:
                    listener(item)
                except Exception:
                    log.exception("Transition listener failed for case %s", item.case_id)

    @staticmethod
    def _require(repositories: SyncRepositories, case_id: UUID) -> DisputeCase:
        case = repositories.cases.get(case_id)
        if case is None:
            raise UnknownCase(f"Unknown case: {case_id}")
        return case

    def _create(
        self,
        repositories: SyncRepositories,
        staged: _Staged,
        connection_id: str,
        payload: CanonicalPayload,
        *,
        now: datetime,
    ) -> DisputeCase:
        case = DisputeCase(
            connection_id=connection_id,
            external_dispute_id=payload.dispute.dispute_id,
            created_at=now,
            updated_at=now,
        )
        case.apply_details(payload.dispute)
        if not case.reservation_ref and payload.reservation.reservation_id:
            case.reservation_ref = payload.reservation.reservation_id
        case.record(
            TimelineKind.CREATED,
            actor=SYSTEM_ACTOR,
            reason=f"Dispute {case.external_dispute_id} received from {connection_id}",
            at=now,
            to_status=case.status,
        )
        repositories.cases.add(case)
        self._stage(
            repositories,
            staged,
            case,
            CaseTransition(
                case_id=case.id,
                connection_id=connection_id,
                external_dispute_id=case.external_dispute_id,
                from_status=None,
                to_status=case.status,
                actor=SYSTEM_ACTOR,
                reason="created",
                source_connection_id=connection_id,
            ),
        )
        log.info(
            "Opened case %s for %s dispute %s", case.id, connection_id, case.external_dispute_id
        )
        return case

    @staticmethod
    def _apply_details(
        case: DisputeCase,
        payload: CanonicalPayload,
        source_connection_id: str,
        event_type: str,
        *,
        now: datetime,
    ) -> tuple[str, ...]:
        if not payload.is_dispute:
            return ()
        try:
            changes = case.apply_details(payload.dispute)
        except CaseLocked as exc:
            log.warning("%s", exc)
            case.record(
                TimelineKind.INFO,
                actor=SYSTEM_ACTOR,
                reason=f"{event_type} tried to change locked fields while {case.status}",
                at=now,
                details={"source": source_connection_id},
            )
            return ()
        if not changes:
            return ()
        case.record(
            TimelineKind.UPDATE,
            actor=SYSTEM_ACTOR,
            reason=f"{event_type} from {source_connection_id}",
            at=now,
            details={name: [old, new] for name, (old, new) in changes.items()},
        )
        return tuple(sorted(changes))

    @staticmethod
    def _attach_document(
        case: DisputeCase,
        payload: CanonicalPayload,
        source_connection_id: str,
        *,
        now: datetime,
    ) -> bool:
        document = payload.document
        if not document.reference:
            return False
        evidence_type = EvidenceType(document.evidence_type or EvidenceType.OTHER)
        return _attach_evidence(
            case,
            evidence_type,
            document.reference,
            source_connection_id,
            reason=f"Evidence {evidence_type} received from {source_connection_id}",
            now=now,
        )

    def _collect_reservation_evidence(
        self,
        source_connection_id: str,
        event_type: str,
        payload: CanonicalPayload,
    ) -> CaseUpdate:
        """Attach a PMS reservation or folio to every open case that names it."""

        collected = _PMS_EVIDENCE.get(str(event_type).split(".", 1)[0])
        if collected is None:
            return CaseUpdate(case=None)
        evidence_type, entity = collected
        if evidence_type is EvidenceType.FOLIO and not payload.folio:
            return CaseUpdate(case=None)
        reservation = payload.reservation
        refs = {
            reservation.reservation_id,
            reservation.confirmation_number,
            *(line.reservation_id for line in payload.folio),
        } - {""}
        if not refs:
            return CaseUpdate(case=None)
        reference = f"{source_connection_id}:{entity}:{reservation.reservation_id or min(refs)}"

        def work(repositories: SyncRepositories, staged: _Staged) -> CaseUpdate:
            now = self._clock()
            matched: list[UUID] = []
            for case in repositories.cases.list_open_by_reservation(refs):
                if _attach_evidence(
                    case,
                    evidence_type,
                    reference,
                    source_connection_id,
                    reason=f"{evidence_type} collected from {event_type} on {source_connection_id}",
                    now=now,
                ):
                    self._rescore(repositories, staged, case, now=now)
                    matched.append(case.id)
            return CaseUpdate(
                case=None,
                changed=("evidence",) if matched else (),
                transitions=tuple(staged.transitions),
                evidence_cases=tuple(matched),
            )

        update = self._run(work)
        if update.evidence_cases:
            log.info(
                "%s %s added as evidence to %d case(s)",
                source_connection_id,
                evidence_type,
                len(update.evidence_cases),
            )
        return update

    @staticmethod
    def _collect_from_store(
        repositories: SyncRepositories, case: DisputeCase, *, now: datetime
    ) -> None:
        """Match a new case against reservations already polled from PMS connections."""

        if not case.reservation_ref:
            return
        records = repositories.records.find(
            entity=Entity.RESERVATIONS, external_id=case.reservation_ref
        )
        for record in records:
            _attach_evidence(
                case,
                EvidenceType.RESERVATION_CONFIRMATION,
                f"{record.connection_id}:{Entity.RESERVATIONS}:{record.external_id}",
                record.connection_id,
                reason=f"Reservation {record.external_id} matched on {record.connection_id}",
                now=now,
            )

    def _apply_reported_outcome(
        self,
        repositories: SyncRepositories,
        staged: _Staged,
        case: DisputeCase,
        payload: CanonicalPayload,
        source_connection_id: str,
        *,
        now: datetime,
    ) -> None:
        target = _OUTCOME_STATUSES.get(payload.dispute.status.lower())
        if target is None or target is case.status:
            return
        reason = f"{source_connection_id} reported {payload.dispute.status}"
        if not can_transition(case.status, target):
            case.record(
                TimelineKind.INFO,
                actor=SYSTEM_ACTOR,
                reason=f"{reason}; not applicable while {case.status}",
                at=now,
            )
            return
        self._transition(
            repositories, staged, case, target,
            actor=SYSTEM_ACTOR, reason=reason, at=now, source=source_connection_id,
        )  # fmt: skip

    def _transition(
        self,
        repositories: SyncRepositories,
        staged: _Staged,
        case: DisputeCase,
        target: CaseStatus,
        *,
        actor: str,
        reason: str,
        at: datetime,
        source: str | None = None,
    ) -> None:
        source_status = case.status
        transition(case, target, actor=actor, reason=reason, at=at)
        log.info("Case %s: %s -> %s (%s)", case.id, source_status, target, reason)
        self._stage(
            repositories,
            staged,
            case,
            CaseTransition(
                case_id=case.id,
                connection_id=case.connection_id,
                external_dispute_id=case.external_dispute_id,
                from_status=source_status,
                to_status=target,
                actor=actor,
                reason=reason,
                source_connection_id=source,
            ),
        )

    def _stage(
        self,
        repositories: SyncRepositories,
        staged: _Staged,
        case: DisputeCase,
        item: CaseTransition,
    ) -> None:
        staged.transitions.append(item)
        if self._outbox is not None:
            self._outbox(repositories, case, item)

    def _context(self, repositories: SyncRepositories, case: DisputeCase) -> ScoringContext:
        repeat = (
            repositories.cases.count_for_guest(case.guest_ref, exclude=case.id)
            if case.guest_ref
            else 0
        )
        property_rate: float | None = None
        if case.property_id and case.reason_code:
            won, lost = repositories.cases.outcome_counts(
                property_id=case.property_id, reason_code=case.reason_code
            )
            if won + lost:
                property_rate = won / (won + lost)
        return ScoringContext(repeat_disputes=repeat, property_win_rate=property_rate)

    def _rescore(
        self,
        repositories: SyncRepositories,
        staged: _Staged,
        case: DisputeCase,
        *,
        now: datetime,
    ) -> ScoreBreakdown:
        breakdown = score(
            case,
            case.evidence_types,
            now=now,
            context=self._context(repositories, case),
            tables=self._tables,
        )
        previous = case.recommendation
        if breakdown.total != case.confidence_score or breakdown.recommendation is not previous:
            case.confidence_score = breakdown.total
            case.recommendation = breakdown.recommendation
            case.record(
                TimelineKind.SCORE,
                actor=AI_ACTOR,
                reason=f"Scored {breakdown.total} ({breakdown.recommendation})",
                at=now,
                details=breakdown.as_details(),
            )

        if breakdown.recommendation is Recommendation.AUTO_SUBMIT:
            if case.status is CaseStatus.PENDING:
                reason = f"Confidence {breakdown.total} meets auto-submit threshold"
                self._transition(
                    repositories, staged, case, CaseStatus.IN_REVIEW,
                    actor=AI_ACTOR, reason=reason, at=now,
                )  # fmt: skip
                self._transition(
                    repositories, staged, case, CaseStatus.SUBMITTED,
                    actor=AI_ACTOR, reason=reason, at=now,
                )  # fmt: skip
        elif breakdown.recommendation is not previous and case.status.is_editable:
            missing = ", ".join(item.value for item in breakdown.missing_evidence) or "none"
            message = (
                f"Dispute {case.external_dispute_id} scored {breakdown.total} "
                f"({breakdown.recommendation}); missing evidence: {missing}"
            )
            raise_alert(repositories, AlertScope.CASE, str(case.id), message, at=now)
            case.record(TimelineKind.ALERT, actor=AI_ACTOR, reason=message, at=now)
        return breakdown


def _attach_evidence(
    case: DisputeCase,
    evidence_type: EvidenceType,
    reference: str,
    source_connection_id: str,
    *,
    reason: str,
    now: datetime,
) -> bool:
    item = case.add_evidence(
        evidence_type, reference, source_connection_id=source_connection_id, at=now
    )
    if item is None:
        return False
    case.record(
        TimelineKind.EVIDENCE,
        actor=SYSTEM_ACTOR,
        reason=reason,
        at=now,
        details={"reference": reference},
    )
    return True
