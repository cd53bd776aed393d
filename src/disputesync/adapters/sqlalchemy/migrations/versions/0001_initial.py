"""Initial schema.

Revision ID: 0001_initial
Revises:
Create Date: 2026-03-02 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "connection",
        sa.Column("connection_id", sa.String(64), nullable=False),
        sa.Column("adapter_kind", sa.String(64), nullable=False),
        sa.Column("base_url", sa.String(), nullable=False),
        sa.Column("auth_scheme", sa.String(32), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at_ms", sa.BigInteger(), nullable=False),
        sa.Column("rate_capacity", sa.Integer(), nullable=False),
        sa.Column("rate_refill_per_minute", sa.Integer(), nullable=False),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("sealed_secrets", sa.LargeBinary(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.PrimaryKeyConstraint("connection_id", name="pk_connection"),
    )
    op.create_index("ix_connection_adapter_kind", "connection", ["adapter_kind"])

    op.create_table(
        "sync_event",
        sa.Column("sequence", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("source_connection_id", sa.String(64), nullable=False),
        sa.Column("partition_key", sa.String(), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("occurred_at", _TS, nullable=False),
        sa.Column("received_at", _TS, nullable=False),
        sa.Column("canonical_payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("processed_at", _TS, nullable=True),
        sa.ForeignKeyConstraint(
            ["source_connection_id"],
            ["connection.connection_id"],
            name="fk_sync_event_sync_event_source_connection_id_connection",
        ),
        sa.PrimaryKeyConstraint("sequence", name="pk_sync_event"),
        sa.UniqueConstraint(
            "source_connection_id",
            "event_id",
            name="uq_sync_event_sync_event_source_connection_id",
        ),
    )
    op.create_index("ix_sync_event_status_sequence", "sync_event", ["status", "sequence"])

    op.create_table(
        "canonical_record",
        sa.Column("connection_id", sa.String(64), nullable=False),
        sa.Column("entity", sa.String(32), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.PrimaryKeyConstraint(
            "connection_id", "entity", "external_id", name="pk_canonical_record"
        ),
    )

    op.create_table(
        "dispute_case",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("connection_id", sa.String(64), nullable=False),
        sa.Column("external_dispute_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("guest_ref", sa.String(), nullable=False),
        sa.Column("guest_name", sa.String(), nullable=False),
        sa.Column("reservation_ref", sa.String(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("reason_code", sa.String(32), nullable=False),
        sa.Column("dispute_date", sa.String(10), nullable=False),
        sa.Column("due_date", sa.String(10), nullable=False),
        sa.Column("card_brand", sa.String(32), nullable=False),
        sa.Column("card_present", sa.Boolean(), nullable=True),
        sa.Column("ip_country", sa.String(2), nullable=False),
        sa.Column("property_id", sa.String(), nullable=False),
        sa.Column("property_country", sa.String(2), nullable=False),
        sa.Column("confidence_score", sa.Integer(), nullable=True),
        sa.Column("recommendation", sa.String(32), nullable=True),
        sa.Column("manual_override", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("updated_at", _TS, nullable=False),
        sa.Column("resolved_at", _TS, nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_dispute_case"),
        sa.UniqueConstraint(
            "connection_id",
            "external_dispute_id",
            name="uq_dispute_case_dispute_case_connection_id",
        ),
    )
    op.create_index("ix_dispute_case_guest_ref", "dispute_case", ["guest_ref"])
    op.create_index("ix_dispute_case_status_due", "dispute_case", ["status", "due_date"])

    op.create_table(
        "evidence_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("case_id", sa.Uuid(), nullable=False),
        sa.Column("evidence_type", sa.String(32), nullable=False),
        sa.Column("reference", sa.String(), nullable=False),
        sa.Column("source_connection_id", sa.String(64), nullable=True),
        sa.Column("added_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(
            ["case_id"],
            ["dispute_case.id"],
            name="fk_evidence_item_evidence_item_case_id_dispute_case",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_evidence_item"),
        sa.UniqueConstraint(
            "case_id",
            "evidence_type",
            "reference",
            name="uq_evidence_item_evidence_item_case_id",
        ),
    )

    op.create_table(
        "timeline_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("case_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.ForeignKeyConstraint(
            ["case_id"],
            ["dispute_case.id"],
            name="fk_timeline_event_timeline_event_case_id_dispute_case",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_timeline_event"),
        sa.UniqueConstraint(
            "case_id", "sequence", name="uq_timeline_event_timeline_event_case_id"
        ),
    )

    op.create_table(
        "outbound_task",
        sa.Column("sequence", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("case_id", sa.Uuid(), nullable=False),
        sa.Column("target_connection_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("case_status_at_enqueue", sa.String(16), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("next_attempt_at", _TS, nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("completed_at", _TS, nullable=True),
        sa.ForeignKeyConstraint(
            ["case_id"],
            ["dispute_case.id"],
            name="fk_outbound_task_outbound_task_case_id_dispute_case",
        ),
        sa.ForeignKeyConstraint(
            ["target_connection_id"],
            ["connection.connection_id"],
            name="fk_outbound_task_outbound_task_target_connection_id_connection",
        ),
        sa.PrimaryKeyConstraint("sequence", name="pk_outbound_task"),
        sa.UniqueConstraint("task_id", name="uq_outbound_task_outbound_task_task_id"),
    )
    op.create_index(
        "ix_outbound_task_pair",
        "outbound_task",
        ["case_id", "target_connection_id", "sequence"],
    )
    op.create_index(
        "ix_outbound_task_status_due", "outbound_task", ["status", "next_attempt_at"]
    )

    op.create_table(
        "alert",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("ref", sa.String(), nullable=False),
        sa.Column("level", sa.String(16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", _TS, nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_alert"),
    )


def downgrade() -> None:
    op.drop_table("alert")
    op.drop_index("ix_outbound_task_status_due", table_name="outbound_task")
    op.drop_index("ix_outbound_task_pair", table_name="outbound_task")
    op.drop_table("outbound_task")
    op.drop_table("timeline_event")
    op.drop_table("evidence_item")
    op.drop_index("ix_dispute_case_status_due", table_name="dispute_case")
    op.drop_index("ix_dispute_case_guest_ref", table_name="dispute_case")
    op.drop_table("dispute_case")
    op.drop_table("canonical_record")
    op.drop_index("ix_sync_event_status_sequence", table_name="sync_event")
    op.drop_table("sync_event")
    op.drop_index("ix_connection_adapter_kind", table_name="connection")
    op.drop_table("connection")
