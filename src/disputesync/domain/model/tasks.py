"""Outbound work items and operator alerts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003
from typing import Any
from uuid import UUID, uuid4

from disputesync.domain.clock import utcnow
from disputesync.domain.model.enums import (
    AlertLevel,
    AlertScope,
    CaseStatus,
    OutboundAction,
    TaskStatus,
)


@dataclass(eq=False, kw_only=True)
class OutboundTask:
    """A case-derived update pushed to one connection.

    ``sequence`` is store-assigned and defines creation order per
    ``(case_id, target_connection_id)``.
    """

    case_id: UUID
    target_connection_id: str
    action: OutboundAction
    payload: dict[str, Any]
    case_status_at_enqueue: CaseStatus
    task_id: UUID = field(default_factory=uuid4)
    sequence: int | None = None
    attempt: int = 0
    status: TaskStatus = TaskStatus.QUEUED
    next_attempt_at: datetime = field(default_factory=utcnow)
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def finish(self, status: TaskStatus, *, at: datetime, error: str | None = None) -> None:
        self.status = status
        self.completed_at = at
        if error is not None:
            self.last_error = error

    def schedule_retry(self, *, at: datetime, error: str) -> None:
        self.status = TaskStatus.FAILED
        self.next_attempt_at = at
        self.last_error = error


@dataclass(eq=False, kw_only=True)
class Alert:
    """Operator-visible problem report."""

    scope: AlertScope
    ref: str
    level: AlertLevel
    message: str
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    acknowledged: bool = False
