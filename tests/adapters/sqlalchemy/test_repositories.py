"""Tests for SQLAlchemy repositories."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from disputesync.domain.model import (
    Alert,
    AlertLevel,
    AlertScope,
    AuthScheme,
    CanonicalRecord,
    CaseStatus,
    Connection,
    ConnectionStatus,
    CredentialState,
    DisputeCase,
    OutboundAction,
    OutboundTask,
    RateLimitPolicy,
    SyncEvent,
    SyncEventType,
    TaskStatus,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from disputesync.domain.ports import SyncUnitOfWork

    UowFactory = Callable[[], SyncUnitOfWork]

NOW = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)


def _event(event_id: str, connection_id: str = "stripe-1") -> SyncEvent:
    return SyncEvent(
        event_id=event_id,
        event_type=SyncEventType.DISPUTE_CREATED,
        source_connection_id=connection_id,
        partition_key=f"{connection_id}:dp_1",
        raw_payload={"id": event_id},
        occurred_at=NOW,
    )


def _task(case_id: UUID, target: str = "mews-1", **overrides: object) -> OutboundTask:
    task = OutboundTask(
        case_id=case_id,
        target_connection_id=target,
        action=OutboundAction.PUSH_NOTE,
        payload={"note": "hi"},
        case_status_at_enqueue=CaseStatus.PENDING,
        next_attempt_at=NOW,
    )
    for name, value in overrides.items():
        setattr(task, name, value)
    return task


def test_connection_round_trips_composites(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.connections.add(
            Connection(
                connection_id="verifi-1",
                adapter_kind="verifi",
                base_url="https://api.verifi.com/v3",
                credentials=CredentialState(
                    auth_scheme=AuthScheme.OAUTH2_CLIENT_CREDENTIALS,
                    access_token="at",
                    expires_at_ms=1_700_000_000_000,
                ),
                rate_limit=RateLimitPolicy(capacity=10, refill_per_minute=60),
                capabilities={"alerts": {"read": False, "write": True}},
                sealed_secrets=b"sealed",
            )
        )
        uow.repositories.connections.add(
            Connection(
                connection_id="mews-1",
                adapter_kind="mews",
                base_url="https://api.mews.com/api/connector/v1",
                credentials=CredentialState(auth_scheme=AuthScheme.API_KEY),
                rate_limit=RateLimitPolicy(capacity=30, refill_per_minute=120),
                status=ConnectionStatus.DISCONNECTED,
            )
        )
        uow.commit()

    with sqlite_unit_of_work() as uow:
        connections = uow.repositories.connections
        stored = connections.get("verifi-1")
        assert stored is not None
        assert stored.credentials == CredentialState(
            auth_scheme=AuthScheme.OAUTH2_CLIENT_CREDENTIALS,
            access_token="at",
            expires_at_ms=1_700_000_000_000,
        )
        assert stored.rate_limit == RateLimitPolicy(capacity=10, refill_per_minute=60)
        assert stored.capabilities == {"alerts": {"read": False, "write": True}}
        assert stored.sealed_secrets == b"sealed"
        assert stored.created_at.tzinfo is not None

        assert [item.connection_id for item in connections.list()] == ["mews-1", "verifi-1"]
        assert [item.connection_id for item in connections.list(adapter_kind="mews")] == [
            "mews-1"
        ]
        assert [
            item.connection_id for item in connections.list(status=ConnectionStatus.ACTIVE)
        ] == ["verifi-1"]


def test_event_repository_deduplicates_and_orders(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        events = uow.repositories.events
        assert events.add_if_absent(_event("evt_1")) is True
        assert events.add_if_absent(_event("evt_2")) is True
        assert events.add_if_absent(_event("evt_1")) is False
        # the same provider event id on another connection is a different event
        assert events.add_if_absent(_event("evt_1", connection_id="stripe-2")) is True
        uow.commit()

    with sqlite_unit_of_work() as uow:
        events = uow.repositories.events
        pending = events.pending(limit=10)
        assert [(event.source_connection_id, event.event_id) for event in pending] == [
            ("stripe-1", "evt_1"),
            ("stripe-1", "evt_2"),
            ("stripe-2", "evt_1"),
        ]
        sequences = [event.sequence for event in pending]
        assert sequences == sorted(sequences)
        assert events.exists(connection_id="stripe-1", event_id="evt_2")
        assert not events.exists(connection_id="stripe-2", event_id="evt_2")

        first = pending[0]
        assert first.sequence is not None
        first.mark_error("boom", at=NOW)
        uow.commit()
        assert [event.event_id for event in events.pending(limit=1)] == ["evt_2"]
        assert events.get(first.sequence) is first


def test_case_queries(sqlite_unit_of_work: UowFactory) -> None:
    def case(ref: str, status: CaseStatus, due: str, **fields: object) -> DisputeCase:
        return DisputeCase(
            connection_id="stripe-1",
            external_dispute_id=ref,
            _status=status,
            due_date=due,
            property_id="hotel-1",
            reason_code="fraudulent",
            **fields,  # type: ignore[arg-type]
        )

    overdue = case("dp_1", CaseStatus.PENDING, "2026-02-01", guest_ref="cust-1")
    with sqlite_unit_of_work() as uow:
        cases = uow.repositories.cases
        cases.add(overdue)
        cases.add(case("dp_2", CaseStatus.WON, "2026-02-01", guest_ref="cust-1"))
        cases.add(case("dp_3", CaseStatus.WON, "2026-03-01", guest_ref="cust-1"))
        cases.add(case("dp_4", CaseStatus.LOST, "", guest_ref="cust-2"))
        cases.add(case("dp_5", CaseStatus.IN_REVIEW, "2026-03-01"))
        cases.add(case("dp_6", CaseStatus.PENDING, ""))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        cases = uow.repositories.cases
        found = cases.get_by_external_id(connection_id="stripe-1", external_dispute_id="dp_1")
        assert found is not None
        assert found.id == overdue.id
        assert found.version == 1
        assert cases.get_by_external_id(connection_id="stripe-2", external_dispute_id="dp_1") is (
            None
        )

        assert [item.external_dispute_id for item in cases.list_overdue(today="2026-02-10")] == [
            "dp_1"
        ]
        assert {item.external_dispute_id for item in cases.list_by_status(CaseStatus.WON)} == {
            "dp_2",
            "dp_3",
        }
        assert cases.count_for_guest("cust-1") == 3
        assert cases.count_for_guest("cust-1", exclude=overdue.id) == 2
        assert cases.outcome_counts(property_id="hotel-1", reason_code="fraudulent") == (2, 1)
        assert cases.outcome_counts(property_id="hotel-2", reason_code="fraudulent") == (0, 0)


def test_open_cases_by_reservation(sqlite_unit_of_work: UowFactory) -> None:
    def case(ref: str, status: CaseStatus, reservation: str) -> DisputeCase:
        return DisputeCase(
            connection_id="stripe-1",
            external_dispute_id=ref,
            _status=status,
            reservation_ref=reservation,
        )

    with sqlite_unit_of_work() as uow:
        cases = uow.repositories.cases
        cases.add(case("dp_1", CaseStatus.PENDING, "res-1"))
        cases.add(case("dp_2", CaseStatus.IN_REVIEW, "CONF-1"))
        cases.add(case("dp_3", CaseStatus.SUBMITTED, "res-1"))
        cases.add(case("dp_4", CaseStatus.WON, "res-1"))
        cases.add(case("dp_5", CaseStatus.PENDING, ""))
        cases.add(case("dp_6", CaseStatus.PENDING, "res-2"))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        cases = uow.repositories.cases
        found = cases.list_open_by_reservation(["res-1", "CONF-1", ""])
        assert sorted(item.external_dispute_id for item in found) == ["dp_1", "dp_2"]
        assert cases.list_open_by_reservation([]) == []
        assert cases.list_open_by_reservation([""]) == []


def test_due_tasks_respect_pair_order(sqlite_unit_of_work: UowFactory) -> None:
    case_a, case_b = uuid4(), uuid4()
    with sqlite_unit_of_work() as uow:
        tasks = uow.repositories.tasks
        first = _task(case_a)
        tasks.add(first)
        tasks.add(_task(case_a))
        tasks.add(_task(case_a, target="stripe-1"))
        tasks.add(_task(case_b, next_attempt_at=NOW + timedelta(minutes=5)))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        tasks = uow.repositories.tasks
        due = tasks.due(now=NOW, limit=10)
        assert [(task.case_id, task.target_connection_id) for task in due] == [
            (case_a, "mews-1"),
            (case_a, "stripe-1"),
        ]
        assert due[0].task_id == first.task_id
        assert due[0].next_attempt_at == NOW

        # a failed head still blocks its successor until it finishes
        due[0].schedule_retry(at=NOW + timedelta(seconds=30), error="HTTP 503")
        uow.commit()
        assert [task.target_connection_id for task in tasks.due(now=NOW, limit=10)] == [
            "stripe-1"
        ]
        later = tasks.due(now=NOW + timedelta(minutes=10), limit=10)
        assert [(task.case_id, task.target_connection_id) for task in later] == [
            (case_a, "mews-1"),
            (case_a, "stripe-1"),
            (case_b, "mews-1"),
        ]
        assert later[0].task_id == first.task_id

        later[0].finish(TaskStatus.SUCCEEDED, at=NOW)
        uow.commit()
        successor = tasks.list_for_case(case_a)[1]
        assert successor in tasks.due(now=NOW, limit=10)


def test_bulk_task_transitions_by_connection(sqlite_unit_of_work: UowFactory) -> None:
    case_id = uuid4()
    with sqlite_unit_of_work() as uow:
        tasks = uow.repositories.tasks
        tasks.add(_task(case_id))
        tasks.add(_task(case_id, status=TaskStatus.FAILED))
        tasks.add(_task(case_id, status=TaskStatus.IN_FLIGHT))
        tasks.add(_task(case_id, status=TaskStatus.SUCCEEDED))
        tasks.add(_task(case_id, target="stripe-1", status=TaskStatus.IN_FLIGHT))
        uow.commit()

    with sqlite_unit_of_work() as uow:
        tasks = uow.repositories.tasks
        assert tasks.pause_for_connection("mews-1") == 2
        assert tasks.resume_for_connection("mews-1", now=NOW + timedelta(hours=1)) == 2
        assert tasks.reset_in_flight() == 2
        assert tasks.cancel_for_connection("mews-1", now=NOW) == 3
        uow.commit()
        statuses = [
            (task.target_connection_id, task.status) for task in tasks.list_for_case(case_id)
        ]

    assert statuses == [
        ("mews-1", TaskStatus.CANCELLED),
        ("mews-1", TaskStatus.CANCELLED),
        ("mews-1", TaskStatus.CANCELLED),
        ("mews-1", TaskStatus.SUCCEEDED),
        ("stripe-1", TaskStatus.QUEUED),
    ]
    with sqlite_unit_of_work() as uow:
        cancelled = uow.repositories.tasks.list_for_case(case_id)[0]
    assert cancelled.last_error == "target connection disconnected"
    assert cancelled.completed_at == NOW


def test_alerts_hide_acknowledged_by_default(sqlite_unit_of_work: UowFactory) -> None:
    seen = Alert(
        scope=AlertScope.TASK, ref="t-1", level=AlertLevel.WARNING, message="old",
        created_at=NOW - timedelta(hours=1), acknowledged=True,
    )  # fmt: skip
    fresh = Alert(
        scope=AlertScope.CASE, ref="c-1", level=AlertLevel.INFO, message="new", created_at=NOW
    )
    with sqlite_unit_of_work() as uow:
        uow.repositories.alerts.add(fresh)
        uow.repositories.alerts.add(seen)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        alerts = uow.repositories.alerts
        assert [alert.message for alert in alerts.list()] == ["new"]
        assert [alert.message for alert in alerts.list(include_acknowledged=True)] == [
            "old",
            "new",
        ]
        stored = alerts.get(fresh.id)
    assert stored is not None
    assert stored.scope is AlertScope.CASE


def test_canonical_records_are_keyed_per_connection(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        uow.repositories.records.add(
            CanonicalRecord(
                connection_id="mews-1",
                entity="reservations",
                external_id="res-1",
                content_hash="abc",
                payload={"Id": "res-1"},
            )
        )
        uow.commit()

    with sqlite_unit_of_work() as uow:
        records = uow.repositories.records
        stored = records.get(connection_id="mews-1", entity="reservations", external_id="res-1")
        assert stored is not None
        assert stored.payload == {"Id": "res-1"}
        assert records.get(connection_id="mews-2", entity="reservations", external_id="res-1") is (
            None
        )


def test_canonical_records_found_across_connections(sqlite_unit_of_work: UowFactory) -> None:
    with sqlite_unit_of_work() as uow:
        for connection_id, entity in (
            ("opera-1", "reservations"),
            ("mews-1", "reservations"),
            ("mews-1", "folios"),
        ):
            uow.repositories.records.add(
                CanonicalRecord(
                    connection_id=connection_id,
                    entity=entity,
                    external_id="res-1",
                    content_hash="abc",
                    payload={},
                )
            )
        uow.commit()

    with sqlite_unit_of_work() as uow:
        records = uow.repositories.records
        found = records.find(entity="reservations", external_id="res-1")
        assert [record.connection_id for record in found] == ["mews-1", "opera-1"]
        assert records.find(entity="reservations", external_id="res-2") == []
