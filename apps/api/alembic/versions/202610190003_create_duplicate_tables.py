"""create duplicate warning, match and audit tables

Revision ID: 202610190003
Revises: 202610190002
Create Date: 2026-10-19 09:20:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190003"
down_revision: str | None = "202610190002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "duplicate_warning",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("triggered_by_user_id", sa.String(length=255), nullable=False),
        sa.Column("trigger_action", sa.String(length=32), nullable=False),
        sa.Column("warning_type", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("trigger_data", sa.JSON(), nullable=False),
        sa.Column("user_decision", sa.String(length=16), nullable=True),
        sa.Column("decision_made", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("decision_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proceed_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["triggered_by_user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duplicate_warning_created_at", "duplicate_warning", ["created_at"])

    op.create_table(
        "duplicate_potential_match",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("warning_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("match_type", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("match_details", sa.JSON(), nullable=False),
        sa.Column("existing_lead_id", sa.Uuid(), nullable=True),
        sa.Column("existing_pipeline_id", sa.Uuid(), nullable=True),
        sa.Column("existing_company", sa.String(length=255), nullable=True),
        sa.Column("existing_contact_info", sa.JSON(), nullable=False),
        sa.Column("owned_by_user_id", sa.String(length=255), nullable=True),
        sa.Column("last_contact_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("record_status", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["warning_id"], ["duplicate_warning.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["owned_by_user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "duplicate_audit_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("warning_id", sa.Uuid(), nullable=True),
        sa.Column("entity_type", sa.String(length=32), nullable=True),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("system_suggestion", sa.Text(), nullable=True),
        sa.Column("actual_outcome", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duplicate_audit_log_warning_id", "duplicate_audit_log", ["warning_id"])


def downgrade() -> None:
    op.drop_index("ix_duplicate_audit_log_warning_id", table_name="duplicate_audit_log")
    op.drop_table("duplicate_audit_log")
    op.drop_table("duplicate_potential_match")
    op.drop_index("ix_duplicate_warning_created_at", table_name="duplicate_warning")
    op.drop_table("duplicate_warning")
