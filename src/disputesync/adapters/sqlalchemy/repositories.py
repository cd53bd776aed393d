"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from disputesync.adapters.sqlalchemy.mappings import (
    alert_table,
    canonical_record_table,
    connection_table,
    dispute_case_table,
    outbound_task_table,
    sync_event_table,
)
from disputesync.domain.model import (
    Alert,
    CanonicalRecord,
    CaseStatus,
    Connection,
    DisputeCase,
    EventStatus,
    OutboundTask,
    SyncEvent,
    TaskStatus,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import CursorResult
    from sqlalchemy.orm import Session

    from disputesync.domain.model import ConnectionStatus

_OPEN_TASK_STATUSES = (
    TaskStatus.QUEUED,
    TaskStatus.IN_FLIGHT,
    TaskStatus.FAILED,
    TaskStatus.PAUSED,
)
_RUNNABLE_TASK_STATUSES = (TaskStatus.QUEUED, TaskStatus.FAILED)
_SWEEPABLE_CASE_STATUSES = (CaseStatus.PENDING, CaseStatus.IN_REVIEW)


def _rowcount(result: object) -> int:
    return cast("CursorResult[Any]", result).rowcount


class SqlAlchemyConnectionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Connection) -> None:
        self.session.add(entity)

    def get(self, connection_id: str) -> Connection | None:
        return self.session.get(Connection, connection_id)

    def list(
        self,
        *,
        adapter_kind: str | None = None,
        status: ConnectionStatus | None = None,
    ) -> Sequence[Connection]:
        stmt = select(Connection).order_by(connection_table.c.connection_id)
        if adapter_kind is not None:
            stmt = stmt.where(connection_table.c.adapter_kind == adapter_kind)
        if status is not None:
            stmt = stmt.where(connection_table.c.status == status)
        return self.session.execute(stmt).scalars().all()


class SqlAlchemySyncEventRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: SyncEvent) -> None:
        self.session.add(entity)

    def add_if_absent(self, event: SyncEvent) -> bool:
        if self.exists(connection_id=event.source_connection_id, event_id=event.event_id):
            return False
        # the unique constraint settles races between concurrent deliveries
        try:
            with self.session.begin_nested():
                self.session.add(event)
        except IntegrityError:
            return False
        return True

    def exists(self, *, connection_id: str, event_id: str) -> bool:
        stmt = (
            select(sync_event_table.c.sequence)
            .where(sync_event_table.c.source_connection_id == connection_id)
            .where(sync_event_table.c.event_id == event_id)
        )
        return self.session.execute(stmt).first() is not None

    def get(self, sequence: int) -> SyncEvent | None:
        return self.session.get(SyncEvent, sequence)

    def pending(self, *, limit: int) -> Sequence[SyncEvent]:
        stmt = (
            select(SyncEvent)
            .where(sync_event_table.c.status == EventStatus.PENDING)
            .order_by(sync_event_table.c.sequence)
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyCaseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: DisputeCase) -> None:
        self.session.add(entity)

    def get(self, case_id: UUID) -> DisputeCase | None:
        return self.session.get(DisputeCase, case_id)

    def get_by_external_id(
        self, *, connection_id: str, external_dispute_id: str
    ) -> DisputeCase | None:
        stmt = (
            select(DisputeCase)
            .where(dispute_case_table.c.connection_id == connection_id)
            .where(dispute_case_table.c.external_dispute_id == external_dispute_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_status(self, status: CaseStatus) -> Sequence[DisputeCase]:
        stmt = (
            select(DisputeCase)
            .where(dispute_case_table.c._status == status)  # noqa: SLF001
            .order_by(dispute_case_table.c.created_at)
        )
        return self.session.execute(stmt).scalars().all()

    def list_overdue(self, *, today: str) -> Sequence[DisputeCase]:
        stmt = (
            select(DisputeCase)
            .where(dispute_case_table.c._status.in_(_SWEEPABLE_CASE_STATUSES))  # noqa: SLF001
            .where(dispute_case_table.c.due_date != "")
            .where(dispute_case_table.c.due_date < today)
            .order_by(dispute_case_table.c.due_date)
        )
        return self.session.execute(stmt).scalars().all()

    def count_for_guest(self, guest_ref: str, *, exclude: UUID | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(dispute_case_table)
            .where(dispute_case_table.c.guest_ref == guest_ref)
        )
        if exclude is not None:
            stmt = stmt.where(dispute_case_table.c.id != exclude)
        return self.session.execute(stmt).scalar_one()

    def outcome_counts(self, *, property_id: str, reason_code: str) -> tuple[int, int]:
        status = dispute_case_table.c._status  # noqa: SLF001
        stmt = (
            select(status, func.count())
            .where(dispute_case_table.c.property_id == property_id)
            .where(dispute_case_table.c.reason_code == reason_code)
            .where(status.in_((CaseStatus.WON, CaseStatus.LOST)))
            .group_by(status)
        )
        counts = {CaseStatus(row[0]): int(row[1]) for row in self.session.execute(stmt)}
        return counts.get(CaseStatus.WON, 0), counts.get(CaseStatus.LOST, 0)

    def list_open_by_reservation(self, refs: Collection[str]) -> Sequence[DisputeCase]:
        wanted = sorted({ref for ref in refs if ref})
        if not wanted:
            return []
        stmt = (
            select(DisputeCase)
            .where(dispute_case_table.c._status.in_(_SWEEPABLE_CASE_STATUSES))  # noqa: SLF001
            .where(dispute_case_table.c.reservation_ref.in_(wanted))
            .order_by(dispute_case_table.c.created_at)
        )
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyOutboundTaskRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: OutboundTask) -> None:
        self.session.add(entity)

    def get(self, task_id: UUID) -> OutboundTask | None:
        stmt = select(OutboundTask).where(outbound_task_table.c.task_id == task_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def due(self, *, now: datetime, limit: int) -> Sequence[OutboundTask]:
        task = outbound_task_table
        earlier = outbound_task_table.alias("earlier")
        blocked = (
            select(earlier.c.sequence)
            .where(earlier.c.case_id == task.c.case_id)
            .where(earlier.c.target_connection_id == task.c.target_connection_id)
            .where(earlier.c.sequence < task.c.sequence)
            .where(earlier.c.status.in_(_OPEN_TASK_STATUSES))
            .exists()
        )
        stmt = (
            select(OutboundTask)
            .where(task.c.status.in_(_RUNNABLE_TASK_STATUSES))
            .where(task.c.next_attempt_at <= now)
            .where(~blocked)
            .order_by(task.c.sequence)
            .limit(limit)
        )
        return self.session.execute(stmt).scalars().all()

    def list_for_case(self, case_id: UUID) -> Sequence[OutboundTask]:
        stmt = (
            select(OutboundTask)
            .where(outbound_task_table.c.case_id == case_id)
            .order_by(outbound_task_table.c.sequence)
        )
        return self.session.execute(stmt).scalars().all()

    def pause_for_connection(self, connection_id: str) -> int:
        stmt = (
            update(OutboundTask)
            .where(outbound_task_table.c.target_connection_id == connection_id)
            .where(outbound_task_table.c.status.in_(_RUNNABLE_TASK_STATUSES))
            .values(status=TaskStatus.PAUSED)
            .execution_options(synchronize_session="fetch")
        )
        return _rowcount(self.session.execute(stmt))

    def resume_for_connection(self, connection_id: str, *, now: datetime) -> int:
        stmt = (
            update(OutboundTask)
            .where(outbound_task_table.c.target_connection_id == connection_id)
            .where(outbound_task_table.c.status == TaskStatus.PAUSED)
            .values(status=TaskStatus.QUEUED, next_attempt_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return _rowcount(self.session.execute(stmt))

    def cancel_for_connection(self, connection_id: str, *, now: datetime) -> int:
        stmt = (
            update(OutboundTask)
            .where(outbound_task_table.c.target_connection_id == connection_id)
            .where(outbound_task_table.c.status.in_(_OPEN_TASK_STATUSES))
            .values(
                status=TaskStatus.CANCELLED,
                completed_at=now,
                last_error="target connection disconnected",
            )
            .execution_options(synchronize_session="fetch")
        )
        return _rowcount(self.session.execute(stmt))

    def reset_in_flight(self) -> int:
        stmt = (
            update(OutboundTask)
            .where(outbound_task_table.c.status == TaskStatus.IN_FLIGHT)
            .values(status=TaskStatus.QUEUED)
            .execution_options(synchronize_session="fetch")
        )
        return _rowcount(self.session.execute(stmt))


class SqlAlchemyAlertRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Alert) -> None:
        self.session.add(entity)

    def get(self, alert_id: UUID) -> Alert | None:
        return self.session.get(Alert, alert_id)

    def list(self, *, include_acknowledged: bool = False) -> Sequence[Alert]:
        stmt = select(Alert).order_by(alert_table.c.created_at)
        if not include_acknowledged:
            stmt = stmt.where(alert_table.c.acknowledged.is_(False))
        return self.session.execute(stmt).scalars().all()


class SqlAlchemyCanonicalRecordRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: CanonicalRecord) -> None:
        self.session.add(entity)

    def get(self, *, connection_id: str, entity: str, external_id: str) -> CanonicalRecord | None:
        return self.session.get(CanonicalRecord, (connection_id, entity, external_id))

    def find(self, *, entity: str, external_id: str) -> Sequence[CanonicalRecord]:
        stmt = (
            select(CanonicalRecord)
            .where(canonical_record_table.c.entity == entity)
            .where(canonical_record_table.c.external_id == external_id)
            .order_by(canonical_record_table.c.connection_id)
        )
        return self.session.execute(stmt).scalars().all()
