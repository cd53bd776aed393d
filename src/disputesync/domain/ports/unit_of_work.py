"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from disputesync.domain.ports.persistence import (
        AlertRepository,
        CanonicalRecordRepository,
        CaseRepository,
        ConnectionRepository,
        OutboundTaskRepository,
        SyncEventRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection.

    ``commit`` raises ``ConcurrencyConflict`` when a versioned aggregate was
    changed by another writer since it was loaded.
    """

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class SyncRepositories(RepositoryCollection):
    """Repositories the synchronization engine works against."""

    connections: ConnectionRepository
    events: SyncEventRepository
    cases: CaseRepository
    tasks: OutboundTaskRepository
    alerts: AlertRepository
    records: CanonicalRecordRepository


type SyncUnitOfWork = UnitOfWork[SyncRepositories]
