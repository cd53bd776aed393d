"""SQLAlchemy mapping metadata for the disputesync domain model."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import composite, configure_mappers, relationship

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
    EventStatus,
    EvidenceItem,
    EvidenceType,
    OutboundAction,
    OutboundTask,
    RateLimitPolicy,
    Recommendation,
    SyncEvent,
    SyncEventType,
    TaskStatus,
    TimelineEvent,
    TimelineKind,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Connections -------------------------------------------------------------------

connection_table = Table(
    "connection",
    mapper_registry.metadata,
    Column("connection_id", String(64), primary_key=True),
    Column("adapter_kind", String(64), nullable=False, index=True),
    Column("base_url", String, nullable=False),
    Column("auth_scheme", Enum(AuthScheme, native_enum=False), nullable=False),
    Column("access_token", Text, nullable=True),
    Column("refresh_token", Text, nullable=True),
    Column("expires_at_ms", BigInteger, nullable=False, default=0),
    Column("rate_capacity", Integer, nullable=False),
    Column("rate_refill_per_minute", Integer, nullable=False),
    Column("capabilities", JSON, nullable=False),
    Column("sealed_secrets", LargeBinary, nullable=True),
    Column("status", Enum(ConnectionStatus, native_enum=False), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)

# Inbound queue -----------------------------------------------------------------

sync_event_table = Table(
    "sync_event",
    mapper_registry.metadata,
    Column("sequence", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String, nullable=False),
    Column("event_type", Enum(SyncEventType, native_enum=False), nullable=False),
    Column(
        "source_connection_id",
        String(64),
        ForeignKey("connection.connection_id"),
        nullable=False,
    ),
    Column("partition_key", String, nullable=False),
    Column("raw_payload", JSON, nullable=False),
    Column("occurred_at", UTCDateTime(), nullable=False),
    Column("received_at", UTCDateTime(), nullable=False),
    Column("canonical_payload", JSON, nullable=True),
    Column("status", Enum(EventStatus, native_enum=False), nullable=False),
    Column("error", Text, nullable=True),
    Column("processed_at", UTCDateTime(), nullable=True),
    UniqueConstraint("source_connection_id", "event_id"),
    Index("ix_sync_event_status_sequence", "status", "sequence"),
)

canonical_record_table = Table(
    "canonical_record",
    mapper_registry.metadata,
    Column("connection_id", String(64), primary_key=True),
    Column("entity", String(32), primary_key=True),
    Column("external_id", String, primary_key=True),
    Column("content_hash", String(64), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Index("ix_canonical_record_entity_external_id", "entity", "external_id"),
)

# Cases -------------------------------------------------------------------------

dispute_case_table = Table(
    "dispute_case",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("connection_id", String(64), nullable=False),
    Column("external_dispute_id", String, nullable=False),
    Column("status", Enum(CaseStatus, native_enum=False), key="_status", nullable=False),
    Column("guest_ref", String, nullable=False, default=""),
    Column("guest_name", String, nullable=False, default=""),
    Column("reservation_ref", String, nullable=False, default=""),
    Column("amount", BigInteger, nullable=False, default=0),
    Column("currency", String(3), nullable=False, default=""),
    Column("reason_code", String(32), nullable=False, default=""),
    Column("dispute_date", String(10), nullable=False, default=""),
    Column("due_date", String(10), nullable=False, default=""),
    Column("card_brand", String(32), nullable=False, default=""),
    Column("card_present", Boolean, nullable=True),
    Column("ip_country", String(2), nullable=False, default=""),
    Column("property_id", String, nullable=False, default=""),
    Column("property_country", String(2), nullable=False, default=""),
    Column("confidence_score", Integer, nullable=True),
    Column("recommendation", Enum(Recommendation, native_enum=False), nullable=True),
    Column("manual_override", Boolean, nullable=False, default=False),
    Column("version", Integer, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
    Column("resolved_at", UTCDateTime(), nullable=True),
    UniqueConstraint("connection_id", "external_dispute_id"),
    Index("ix_dispute_case_guest_ref", "guest_ref"),
    Index("ix_dispute_case_reservation_ref", "reservation_ref"),
)
Index(
    "ix_dispute_case_status_due",
    dispute_case_table.c._status,  # noqa: SLF001
    dispute_case_table.c.due_date,
)

evidence_item_table = Table(
    "evidence_item",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("case_id", UUIDColumnType, ForeignKey("dispute_case.id"), nullable=False),
    Column("evidence_type", Enum(EvidenceType, native_enum=False), nullable=False),
    Column("reference", String, nullable=False),
    Column("source_connection_id", String(64), nullable=True),
    Column("added_at", UTCDateTime(), nullable=False),
    UniqueConstraint("case_id", "evidence_type", "reference"),
)

timeline_event_table = Table(
    "timeline_event",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("case_id", UUIDColumnType, ForeignKey("dispute_case.id"), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("kind", Enum(TimelineKind, native_enum=False), nullable=False),
    Column("actor", String, nullable=False),
    Column("reason", Text, nullable=False),
    Column("from_status", Enum(CaseStatus, native_enum=False), nullable=True),
    Column("to_status", Enum(CaseStatus, native_enum=False), nullable=True),
    Column("details", JSON, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    UniqueConstraint("case_id", "sequence"),
)

# Outbound queue and alerts ---------------------------------------------------------

outbound_task_table = Table(
    "outbound_task",
    mapper_registry.metadata,
    Column("sequence", Integer, primary_key=True, autoincrement=True),
    Column("task_id", UUIDColumnType, nullable=False, unique=True, default=uuid.uuid4),
    Column("case_id", UUIDColumnType, ForeignKey("dispute_case.id"), nullable=False),
    Column(
        "target_connection_id",
        String(64),
        ForeignKey("connection.connection_id"),
        nullable=False,
    ),
    Column("action", Enum(OutboundAction, native_enum=False), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("case_status_at_enqueue", Enum(CaseStatus, native_enum=False), nullable=False),
    Column("attempt", Integer, nullable=False, default=0),
    Column("status", Enum(TaskStatus, native_enum=False), nullable=False),
    Column("next_attempt_at", UTCDateTime(), nullable=False),
    Column("last_error", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("completed_at", UTCDateTime(), nullable=True),
    Index("ix_outbound_task_pair", "case_id", "target_connection_id", "sequence"),
    Index("ix_outbound_task_status_due", "status", "next_attempt_at"),
)

alert_table = Table(
    "alert",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("scope", Enum(AlertScope, native_enum=False), nullable=False),
    Column("ref", String, nullable=False),
    Column("level", Enum(AlertLevel, native_enum=False), nullable=False),
    Column("message", Text, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("acknowledged", Boolean, nullable=False, default=False),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(
        Connection,
        connection_table,
        properties={
            "credentials": composite(
                CredentialState,
                connection_table.c.auth_scheme,
                connection_table.c.access_token,
                connection_table.c.refresh_token,
                connection_table.c.expires_at_ms,
            ),
            "rate_limit": composite(
                RateLimitPolicy,
                connection_table.c.rate_capacity,
                connection_table.c.rate_refill_per_minute,
            ),
        },
    )

    mapper_registry.map_imperatively(SyncEvent, sync_event_table)
    mapper_registry.map_imperatively(CanonicalRecord, canonical_record_table)

    mapper_registry.map_imperatively(EvidenceItem, evidence_item_table)
    mapper_registry.map_imperatively(TimelineEvent, timeline_event_table)
    mapper_registry.map_imperatively(
        DisputeCase,
        dispute_case_table,
        version_id_col=dispute_case_table.c.version,
        properties={
            "_evidence": relationship(
                EvidenceItem,
                cascade="all, delete-orphan",
                lazy="selectin",
                order_by=evidence_item_table.c.added_at,
            ),
            "_timeline": relationship(
                TimelineEvent,
                cascade="all, delete-orphan",
                lazy="selectin",
                order_by=timeline_event_table.c.sequence,
            ),
        },
    )

    mapper_registry.map_imperatively(OutboundTask, outbound_task_table)
    mapper_registry.map_imperatively(Alert, alert_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
