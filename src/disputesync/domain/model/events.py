"""Inbound sync events and the canonical record store used for polling diffs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003
from typing import Any

from disputesync.domain.clock import utcnow
from disputesync.domain.model.canonical import CanonicalPayload
from disputesync.domain.model.enums import EventStatus, SyncEventType


@dataclass(eq=False, kw_only=True)
class SyncEvent:
    """One inbound occurrence, persisted before it is acknowledged.

    ``sequence`` is assigned by the store and is the processing order within a
    partition. Identity fields and ``raw_payload`` never change after insert;
    normalization fills ``canonical_payload`` once and flips ``status``.
    """

    event_id: str
    event_type: SyncEventType
    source_connection_id: str
    partition_key: str
    raw_payload: dict[str, Any]
    occurred_at: datetime
    received_at: datetime = field(default_factory=utcnow)
    sequence: int | None = None
    canonical_payload: dict[str, Any] | None = None
    status: EventStatus = EventStatus.PENDING
    error: str | None = None
    processed_at: datetime | None = None

    @property
    def canonical(self) -> CanonicalPayload | None:
        if self.canonical_payload is None:
            return None
        return CanonicalPayload.from_dict(self.canonical_payload)

    def mark_processed(self, payload: CanonicalPayload, *, at: datetime) -> None:
        self.canonical_payload = payload.to_dict()
        self.status = EventStatus.PROCESSED
        self.processed_at = at

    def mark_error(self, message: str, *, at: datetime) -> None:
        self.status = EventStatus.ERROR
        self.error = message
        self.processed_at = at


@dataclass(eq=False, kw_only=True)
class CanonicalRecord:
    """Last known state of one polled provider record."""

    connection_id: str
    entity: str
    external_id: str
    content_hash: str
    payload: dict[str, Any]
    updated_at: datetime = field(default_factory=utcnow)
