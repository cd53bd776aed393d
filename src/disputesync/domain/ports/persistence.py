"""Ports for persisting domain aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from disputesync.domain.model import (
    Alert,
    CanonicalRecord,
    Connection,
    DisputeCase,
    OutboundTask,
    SyncEvent,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from datetime import datetime
    from uuid import UUID

    from disputesync.domain.model import CaseStatus, ConnectionStatus


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class ConnectionRepository(Repository[Connection], Protocol):
    def get(self, connection_id: str) -> Connection | None: ...

    def list(
        self,
        *,
        adapter_kind: str | None = None,
        status: ConnectionStatus | None = None,
    ) -> Sequence[Connection]: ...


@runtime_checkable
class SyncEventRepository(Repository[SyncEvent], Protocol):
    def add_if_absent(self, event: SyncEvent) -> bool:
        """Insert unless ``(source_connection_id, event_id)`` exists; report insertion."""
        ...

    def exists(self, *, connection_id: str, event_id: str) -> bool: ...

    def get(self, sequence: int) -> SyncEvent | None: ...

    def pending(self, *, limit: int) -> Sequence[SyncEvent]:
        """Pending events in persisted order."""
        ...


@runtime_checkable
class CaseRepository(Repository[DisputeCase], Protocol):
    def get(self, case_id: UUID) -> DisputeCase | None: ...

    def get_by_external_id(
        self, *, connection_id: str, external_dispute_id: str
    ) -> DisputeCase | None: ...

    def list_by_status(self, status: CaseStatus) -> Sequence[DisputeCase]: ...

    def list_overdue(self, *, today: str) -> Sequence[DisputeCase]:
        """Open cases whose ISO due date is before ``today``."""
        ...

    def count_for_guest(self, guest_ref: str, *, exclude: UUID | None = None) -> int: ...

    def outcome_counts(self, *, property_id: str, reason_code: str) -> tuple[int, int]:
        """``(won, lost)`` totals for a property and reason code."""
        ...

    def list_open_by_reservation(self, refs: Collection[str]) -> Sequence[DisputeCase]:
        """PENDING or IN_REVIEW cases whose reservation reference is one of ``refs``."""
        ...


@runtime_checkable
class OutboundTaskRepository(Repository[OutboundTask], Protocol):
    def get(self, task_id: UUID) -> OutboundTask | None: ...

    def due(self, *, now: datetime, limit: int) -> Sequence[OutboundTask]:
        """Runnable tasks that have no earlier unfinished task for the same case and target."""
        ...

    def list_for_case(self, case_id: UUID) -> Sequence[OutboundTask]: ...

    def pause_for_connection(self, connection_id: str) -> int: ...

    def resume_for_connection(self, connection_id: str, *, now: datetime) -> int: ...

    def cancel_for_connection(self, connection_id: str, *, now: datetime) -> int:
        """Cancel every unfinished task targeting ``connection_id``."""
        ...

    def reset_in_flight(self) -> int: ...


@runtime_checkable
class AlertRepository(Repository[Alert], Protocol):
    def get(self, alert_id: UUID) -> Alert | None: ...

    def list(self, *, include_acknowledged: bool = False) -> Sequence[Alert]: ...


@runtime_checkable
class CanonicalRecordRepository(Repository[CanonicalRecord], Protocol):
    def get(
        self, *, connection_id: str, entity: str, external_id: str
    ) -> CanonicalRecord | None: ...

    def find(self, *, entity: str, external_id: str) -> Sequence[CanonicalRecord]:
        """Records of ``entity`` with ``external_id`` across every connection."""
        ...
