from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from disputesync.adapters.sqlalchemy.repositories import SqlAlchemyCaseRepository
from disputesync.domain.errors import UnknownCase
from disputesync.domain.model import (
    AI_ACTOR,
    AlertScope,
    CanonicalPayload,
    CanonicalRecord,
    CaseStatus,
    DisputeCase,
    DisputeDetails,
    DocumentRef,
    Entity,
    EvidenceType,
    FolioLine,
    ManualDecision,
    OutboundAction,
    Recommendation,
    Reservation,
    SyncEventType,
    TimelineKind,
)
from disputesync.domain.scoring import ScoringTables
from tests.helpers.harness import MEWS_SECRETS, STRIPE_SECRETS, SyncHarness, build_harness

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from disputesync.adapters.vault import FernetSecretVault
    from disputesync.domain.ports import SyncUnitOfWork
    from disputesync.domain.state_machine import CaseTransition
    from tests.helpers.providers import MutableClock

FULL_EVIDENCE = (
    EvidenceType.FOLIO,
    EvidenceType.RESERVATION_CONFIRMATION,
    EvidenceType.AUTH_SIGNATURE,
    EvidenceType.ID_SCAN,
)


def _dispute(dispute_id: str = "dp_1", **details: object) -> CanonicalPayload:
    values: dict[str, object] = {
        "dispute_id": dispute_id,
        "amount": 10000,
        "currency": "USD",
        "reason_code": "X",
        "due_date": "2026-02-20",
    }
    values.update(details)
    return CanonicalPayload(dispute=DisputeDetails(**values))  # type: ignore[arg-type]


def _connect_both(harness: SyncHarness) -> None:
    harness.connect("stripe-1", "stripe", STRIPE_SECRETS)
    harness.connect("mews-1", "mews", MEWS_SECRETS)


def _tasks(harness: SyncHarness, case_id: object) -> list[tuple[str, OutboundAction]]:
    with harness.unit_of_work_factory() as uow:
        return [
            (task.target_connection_id, task.action)
            for task in uow.repositories.tasks.list_for_case(case_id)  # type: ignore[arg-type]
        ]


@pytest.fixture
def strong_harness(
    sqlite_unit_of_work: Callable[[], SyncUnitOfWork],
    vault: FernetSecretVault,
    clock: MutableClock,
) -> SyncHarness:
    harness = build_harness(
        sqlite_unit_of_work, vault, clock, tables=ScoringTables(win_rates={"X": 0.9})
    )
    _connect_both(harness)
    return harness


def test_new_dispute_opens_a_scored_pending_case(harness: SyncHarness) -> None:
    _connect_both(harness)

    update = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())

    case = update.case
    assert case is not None
    assert update.created
    assert case.status is CaseStatus.PENDING
    assert (case.amount, case.currency) == (10000, "USD")
    assert case.confidence_score == 36
    assert case.recommendation is Recommendation.UNLIKELY_TO_WIN
    assert [entry.kind for entry in case.timeline] == [
        TimelineKind.CREATED,
        TimelineKind.SCORE,
        TimelineKind.ALERT,
    ]
    # the source connection does not get its own dispute echoed back
    assert _tasks(harness, case.id) == [
        ("mews-1", OutboundAction.PUSH_FLAG),
        ("mews-1", OutboundAction.PUSH_ALERT),
    ]
    with harness.unit_of_work_factory() as uow:
        (alert,) = uow.repositories.alerts.list()
    assert alert.scope is AlertScope.CASE
    assert alert.ref == str(case.id)


def test_repeated_event_updates_the_same_case(harness: SyncHarness) -> None:
    _connect_both(harness)
    first = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())

    second = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_UPDATED, _dispute(amount=12000)
    )

    assert second.case is not None and first.case is not None
    assert second.case.id == first.case.id
    assert not second.created
    assert second.changed == ("amount",)
    update_entry = second.case.timeline[-1]
    assert update_entry.kind is TimelineKind.UPDATE
    assert update_entry.details == {"amount": [10000, 12000]}
    assert len(harness.cases.list_cases_by_status(CaseStatus.PENDING)) == 1


def test_documents_attach_as_evidence_once(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    document = CanonicalPayload(
        document=DocumentRef(dispute_id="dp_1", evidence_type="FOLIO", reference="s3://folio.pdf")
    )

    update = harness.cases.apply_event("stripe-1", SyncEventType.DOCUMENT_UPLOADED, document)
    again = harness.cases.apply_event("stripe-1", SyncEventType.DOCUMENT_UPLOADED, document)

    assert update.changed == ("evidence",)
    assert again.changed == ()
    assert created.case is not None
    stored = harness.cases.get_case(created.case.id)
    assert stored is not None
    assert [(item.evidence_type, item.reference) for item in stored.evidence] == [
        (EvidenceType.FOLIO, "s3://folio.pdf")
    ]


def test_document_for_unknown_dispute_is_not_a_case(harness: SyncHarness) -> None:
    document = CanonicalPayload(document=DocumentRef(dispute_id="dp_x", reference="s3://x"))

    update = harness.cases.apply_event("stripe-1", SyncEventType.DOCUMENT_UPLOADED, document)

    assert update.case is None
    assert harness.cases.list_cases_by_status(CaseStatus.PENDING) == []


def test_full_evidence_auto_submits(strong_harness: SyncHarness) -> None:
    harness = strong_harness
    seen: list[CaseTransition] = []
    unsubscribe = harness.cases.on_case_transition(seen.append)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    case_id = created.case.id
    assert created.case.recommendation is Recommendation.GATHER_MORE_EVIDENCE

    for index, evidence_type in enumerate(FULL_EVIDENCE):
        case = harness.cases.add_evidence(case_id, evidence_type, f"doc-{index}", actor="user")

    assert case.status is CaseStatus.SUBMITTED
    assert case.confidence_score == 87
    assert case.recommendation is Recommendation.AUTO_SUBMIT
    assert [item.to_status for item in seen] == [
        CaseStatus.PENDING,
        CaseStatus.IN_REVIEW,
        CaseStatus.SUBMITTED,
    ]
    assert {item.actor for item in seen[1:]} == {AI_ACTOR}

    unsubscribe()
    harness.cases.submit_manual_override(case_id, ManualDecision.WON)
    assert len(seen) == 3


def test_partial_evidence_alerts_on_recommendation_change(strong_harness: SyncHarness) -> None:
    harness = strong_harness
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None

    for evidence_type in FULL_EVIDENCE[:3]:
        case = harness.cases.add_evidence(created.case.id, evidence_type, evidence_type.value)

    assert case.status is CaseStatus.PENDING
    assert case.recommendation is Recommendation.REVIEW_RECOMMENDED
    assert case.confidence_score == 78
    with harness.unit_of_work_factory() as uow:
        messages = [alert.message for alert in uow.repositories.alerts.list()]
    # one alert on creation, one when the recommendation moved up
    assert len(messages) == 2
    assert any(message.endswith("missing evidence: ID_SCAN") for message in messages)


def test_duplicate_evidence_is_ignored(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None

    harness.cases.add_evidence(created.case.id, EvidenceType.FOLIO, "folio-1")
    case = harness.cases.add_evidence(created.case.id, EvidenceType.FOLIO, "folio-1")

    assert len(case.evidence) == 1
    assert [entry.kind for entry in case.timeline].count(TimelineKind.EVIDENCE) == 1


def test_manual_override_submits_then_closes(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    case_id = created.case.id

    submitted = harness.orchestrator.submit_manual_override(
        case_id, ManualDecision.SUBMIT, actor="ops@hotel", reason="Guest signed folio"
    )
    assert submitted.status is CaseStatus.SUBMITTED
    assert submitted.manual_override

    harness.clock.advance(days=3)
    won = harness.cases.submit_manual_override(case_id, ManualDecision.WON)

    assert won.status is CaseStatus.WON
    assert won.resolved_at == harness.clock()
    transitions = [entry for entry in won.timeline if entry.kind is TimelineKind.TRANSITION]
    assert [entry.to_status for entry in transitions] == [
        CaseStatus.IN_REVIEW,
        CaseStatus.SUBMITTED,
        CaseStatus.WON,
    ]
    assert transitions[0].actor == "ops@hotel"
    assert ("stripe-1", OutboundAction.PUSH_OUTCOME) in _tasks(harness, case_id)


def test_events_after_close_only_leave_a_note(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    harness.cases.submit_manual_override(created.case.id, ManualDecision.CANCEL)

    update = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_UPDATED, _dispute(amount=99900)
    )

    assert update.case is not None
    assert update.case.status is CaseStatus.CANCELLED
    assert update.case.amount == 10000
    assert update.case.timeline[-1].kind is TimelineKind.INFO


def test_locked_fields_are_kept_after_submission(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    harness.cases.submit_manual_override(created.case.id, ManualDecision.SUBMIT)

    update = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_UPDATED, _dispute(amount=55500)
    )

    assert update.case is not None
    assert update.changed == ()
    assert update.case.amount == 10000
    entry = update.case.timeline[-1]
    assert entry.kind is TimelineKind.INFO
    assert "locked" in entry.reason


def test_provider_reported_outcome_closes_the_case(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    harness.cases.submit_manual_override(created.case.id, ManualDecision.SUBMIT)

    update = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CLOSED, _dispute(status="won")
    )

    assert update.case is not None
    assert update.case.status is CaseStatus.WON
    (item,) = update.transitions
    assert item.source_connection_id == "stripe-1"
    assert item.reason == "stripe-1 reported won"


def test_outcome_not_reachable_from_pending_is_noted(harness: SyncHarness) -> None:
    _connect_both(harness)
    harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())

    update = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CLOSED, _dispute(status="lost")
    )

    assert update.case is not None
    assert update.case.status is CaseStatus.PENDING
    assert update.transitions == ()
    assert "not applicable" in update.case.timeline[-1].reason


def test_sweep_expires_overdue_cases(harness: SyncHarness) -> None:
    _connect_both(harness)
    overdue = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute("dp_old", due_date="2026-02-01")
    )
    current = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert overdue.case is not None and current.case is not None

    expired = harness.orchestrator.sweep()

    assert expired == [overdue.case.id]
    expired_case = harness.cases.get_case(overdue.case.id)
    open_case = harness.cases.get_case(current.case.id)
    assert expired_case is not None and open_case is not None
    assert expired_case.status is CaseStatus.EXPIRED
    assert open_case.status is CaseStatus.PENDING
    with harness.unit_of_work_factory() as uow:
        alerts = [a for a in uow.repositories.alerts.list() if "expired" in a.message]
    assert [alert.ref for alert in alerts] == [str(overdue.case.id)]
    assert harness.orchestrator.sweep() == []


def test_unknown_case_is_reported(harness: SyncHarness) -> None:
    with pytest.raises(UnknownCase):
        harness.cases.add_evidence(uuid4(), EvidenceType.FOLIO, "x")
    with pytest.raises(UnknownCase):
        harness.cases.submit_manual_override(uuid4(), ManualDecision.CANCEL)


def test_pms_reservation_becomes_evidence_for_open_cases(harness: SyncHarness) -> None:
    _connect_both(harness)
    open_case = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute(reservation_ref="res-77")
    ).case
    closed_case = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute("dp_2", reservation_ref="CONF-9")
    ).case
    other_case = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute("dp_3", reservation_ref="res-1")
    ).case
    assert open_case is not None and closed_case is not None and other_case is not None
    harness.cases.submit_manual_override(closed_case.id, ManualDecision.CANCEL)
    reservation = CanonicalPayload(
        reservation=Reservation(reservation_id="res-77", confirmation_number="CONF-9")
    )

    update = harness.cases.apply_event("mews-1", SyncEventType.RESERVATION_UPDATED, reservation)
    again = harness.cases.apply_event("mews-1", SyncEventType.RESERVATION_UPDATED, reservation)

    assert update.case is None
    assert update.changed == ("evidence",)
    assert update.evidence_cases == (open_case.id,)
    assert again.evidence_cases == ()
    stored = harness.cases.get_case(open_case.id)
    assert stored is not None
    assert [
        (item.evidence_type, item.reference, item.source_connection_id)
        for item in stored.evidence
    ] == [(EvidenceType.RESERVATION_CONFIRMATION, "mews-1:reservations:res-77", "mews-1")]
    assert stored.confidence_score > open_case.confidence_score
    assert TimelineKind.EVIDENCE in [entry.kind for entry in stored.timeline]
    for untouched in (closed_case.id, other_case.id):
        case = harness.cases.get_case(untouched)
        assert case is not None
        assert case.evidence == ()


def test_folio_lines_attach_the_folio(harness: SyncHarness) -> None:
    _connect_both(harness)
    created = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute(reservation_ref="res-77")
    )
    assert created.case is not None
    empty = CanonicalPayload(reservation=Reservation(reservation_id="res-77"))
    folio = CanonicalPayload(
        folio=(FolioLine(line_id="l-1", reservation_id="res-77", amount=12000),)
    )

    assert harness.cases.apply_event("mews-1", SyncEventType.FOLIO_UPDATED, empty).changed == ()
    update = harness.cases.apply_event("mews-1", SyncEventType.FOLIO_UPDATED, folio)

    assert update.evidence_cases == (created.case.id,)
    stored = harness.cases.get_case(created.case.id)
    assert stored is not None
    assert [(item.evidence_type, item.reference) for item in stored.evidence] == [
        (EvidenceType.FOLIO, "mews-1:folios:res-77")
    ]


def test_new_case_collects_reservations_polled_earlier(harness: SyncHarness) -> None:
    _connect_both(harness)
    with harness.unit_of_work_factory() as uow:
        uow.repositories.records.add(
            CanonicalRecord(
                connection_id="mews-1",
                entity=Entity.RESERVATIONS,
                external_id="res-77",
                content_hash="h",
                payload={"Id": "res-77"},
            )
        )
        uow.commit()

    created = harness.cases.apply_event(
        "stripe-1", SyncEventType.DISPUTE_CREATED, _dispute(reservation_ref="res-77")
    )

    assert created.case is not None
    assert [(item.evidence_type, item.reference) for item in created.case.evidence] == [
        (EvidenceType.RESERVATION_CONFIRMATION, "mews-1:reservations:res-77")
    ]
    kinds = [entry.kind for entry in created.case.timeline]
    assert kinds.index(TimelineKind.EVIDENCE) < kinds.index(TimelineKind.SCORE)


def test_write_retried_after_a_concurrent_writer(
    harness: SyncHarness,
    sqlite_unit_of_work: Callable[[], SyncUnitOfWork],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    created = harness.cases.apply_event("stripe-1", SyncEventType.DISPUTE_CREATED, _dispute())
    assert created.case is not None
    case_id = created.case.id
    original_get = SqlAlchemyCaseRepository.get
    reads: list[UUID] = []

    def get_then_race(self: SqlAlchemyCaseRepository, wanted: UUID) -> DisputeCase | None:
        case = original_get(self, wanted)
        reads.append(wanted)
        if len(reads) == 1:
            # another worker commits between our read and our write
            with sqlite_unit_of_work() as uow:
                rival = uow.repositories.cases.get(wanted)
                assert rival is not None
                rival.amount = 12000
                uow.commit()
        return case

    monkeypatch.setattr(SqlAlchemyCaseRepository, "get", get_then_race)

    case = harness.cases.add_evidence(case_id, EvidenceType.FOLIO, "folio-1")

    # first attempt, the rival, then the retry
    assert len(reads) == 3
    assert case.amount == 12000
    assert [item.reference for item in case.evidence] == ["folio-1"]
    stored = harness.cases.get_case(case_id)
    assert stored is not None
    assert stored.amount == 12000
    assert [entry.kind for entry in stored.timeline].count(TimelineKind.EVIDENCE) == 1
