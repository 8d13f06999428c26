"""create users, territories and crm tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "territory",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("manager_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "app_user",
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="BDR"),
        sa.Column("territory_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["territory_id"], ["territory.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "crm_lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=64), nullable=False, server_default="New"),
        sa.Column("source", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("bdr_id", sa.String(length=255), nullable=False),
        sa.Column("added_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bdr_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_lead_bdr_id", "crm_lead", ["bdr_id"])

    op.create_table(
        "crm_pipeline_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=False, server_default="Pipeline"),
        sa.Column("status", sa.String(length=64), nullable=False, server_default="Open"),
        sa.Column("value", sa.Numeric(14, 2), nullable=True),
        sa.Column("probability", sa.Integer(), nullable=True),
        sa.Column("bdr_id", sa.String(length=255), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("added_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bdr_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["lead_id"], ["crm_lead.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_pipeline_item_bdr_id", "crm_pipeline_item", ["bdr_id"])

    op.create_table(
        "crm_activity_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("bdr_id", sa.String(length=255), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("pipeline_item_id", sa.Uuid(), nullable=True),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bdr_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["lead_id"], ["crm_lead.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pipeline_item_id"], ["crm_pipeline_item.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_activity_log_lead_ts", "crm_activity_log", ["lead_id", "timestamp"])
    op.create_index("ix_crm_activity_log_pipeline_ts", "crm_activity_log", ["pipeline_item_id", "timestamp"])

    op.create_table(
        "crm_finance_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=False, server_default="Pending"),
        sa.Column("sold_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("gbp_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("actual_gbp_received", sa.Numeric(14, 2), nullable=True),
        sa.Column("commission_paid", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("month", sa.String(length=16), nullable=True),
        sa.Column("bdr_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bdr_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("crm_finance_entry")
    op.drop_index("ix_crm_activity_log_pipeline_ts", table_name="crm_activity_log")
    op.drop_index("ix_crm_activity_log_lead_ts", table_name="crm_activity_log")
    op.drop_table("crm_activity_log")
    op.drop_index("ix_crm_pipeline_item_bdr_id", table_name="crm_pipeline_item")
    op.drop_table("crm_pipeline_item")
    op.drop_index("ix_crm_lead_bdr_id", table_name="crm_lead")
    op.drop_table("crm_lead")
    op.drop_table("app_user")
    op.drop_table("territory")
