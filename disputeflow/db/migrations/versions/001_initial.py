"""Initial schema - disputes

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reference", sa.String(40), nullable=False, unique=True),
        sa.Column("order_id", sa.String(64), nullable=False, unique=True, index=True),
        sa.Column("transaction_id", sa.String(64), nullable=True, index=True),
        sa.Column("buyer_id", sa.String(64), nullable=False, index=True),
        sa.Column("seller_id", sa.String(64), nullable=False, index=True),
        sa.Column("initiated_by", sa.String(64), nullable=False),
        sa.Column("initiator_role", sa.String(10), nullable=False),
        sa.Column("category", sa.String(40), nullable=False, index=True),
        sa.Column("subcategory", sa.String(100), nullable=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("disputed_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("escrow_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(30), nullable=False, server_default="open", index=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium", index=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("evidence", postgresql.JSONB, nullable=True),
        sa.Column("messages", postgresql.JSONB, nullable=True),
        sa.Column("timeline", postgresql.JSONB, nullable=True),
        sa.Column("tags", postgresql.JSONB, nullable=True),
        sa.Column("auto_assessment", postgresql.JSONB, nullable=True),
        sa.Column(
            "assessment_in_flight", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        sa.Column("assessment_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "requires_manual_review", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        sa.Column("assigned_admin", sa.String(64), nullable=True, index=True),
        sa.Column("admin_notes", sa.Text, nullable=True),
        sa.Column("resolution", postgresql.JSONB, nullable=True),
        sa.Column("effects", postgresql.JSONB, nullable=True),
        sa.Column(
            "requires_reconciliation", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        sa.Column("appeal_info", postgresql.JSONB, nullable=True),
        sa.Column("blockchain_locked", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("smart_contract_address", sa.String(128), nullable=True),
        sa.Column("resolution_tx_hash", sa.String(128), nullable=True),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_close_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default=sa.text("1")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_disputes_reconciliation",
        "disputes",
        ["requires_reconciliation"],
        postgresql_where=sa.text("requires_reconciliation"),
    )


def downgrade() -> None:
    op.drop_index("ix_disputes_reconciliation", table_name="disputes")
    op.drop_table("disputes")
