"""Index reservation lookups used for evidence collection.

Revision ID: 0002_reservation_lookups
Revises: 0001_initial
Create Date: 2026-10-18 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op

revision: str = "0002_reservation_lookups"
down_revision: str | None = "0001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_index("ix_dispute_case_reservation_ref", "dispute_case", ["reservation_ref"])
    op.create_index(
        "ix_canonical_record_entity_external_id", "canonical_record", ["entity", "external_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_canonical_record_entity_external_id", table_name="canonical_record")
    op.drop_index("ix_dispute_case_reservation_ref", table_name="dispute_case")
