"""SQLAlchemy adapter package for disputesync."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyAlertRepository,
    SqlAlchemyCanonicalRecordRepository,
    SqlAlchemyCaseRepository,
    SqlAlchemyConnectionRepository,
    SqlAlchemyOutboundTaskRepository,
    SqlAlchemySyncEventRepository,
)
from .unit_of_work import SqlAlchemySyncUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyAlertRepository",
    "SqlAlchemyCanonicalRecordRepository",
    "SqlAlchemyCaseRepository",
    "SqlAlchemyConnectionRepository",
    "SqlAlchemyOutboundTaskRepository",
    "SqlAlchemySyncEventRepository",
    "SqlAlchemySyncUnitOfWork",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
