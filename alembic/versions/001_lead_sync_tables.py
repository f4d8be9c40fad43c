"""Lead sync tables: integrations, leads, lead_lists, lead_list_members, sync_logs.

Revision ID: 001_lead_sync_tables
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_lead_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def upgrade() -> None:
    op.create_table(
        "integrations",
        _id_column(),
        sa.Column("business_id", UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(30), server_default=sa.text("'active'")),
        sa.Column("credentials", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("config", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_integrations_type_name_status", "integrations", ["type", "name", "status"]
    )

    op.create_table(
        "leads",
        _id_column(),
        sa.Column("business_id", UUID(as_uuid=True), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_id", sa.String(100), nullable=True),
        sa.Column("source_metadata", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("first_name", sa.String(200), nullable=True),
        sa.Column("last_name", sa.String(200), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("mobile_phone", sa.String(50), nullable=True),
        sa.Column("street", sa.String(500), nullable=True),
        sa.Column("city", sa.String(200), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("postal_code", sa.String(30), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("company", sa.String(300), nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("department", sa.String(200), nullable=True),
        sa.Column("lead_score", sa.Integer(), server_default=sa.text("50")),
        sa.Column("quality_rating", sa.String(20), server_default=sa.text("'unrated'")),
        sa.Column("do_not_call", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("do_not_email", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("email_opt_out", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", sa.String(30), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "business_id", "source", "source_id", name="uq_leads_business_source_source_id"
        ),
    )

    op.create_table(
        "lead_lists",
        _id_column(),
        sa.Column("business_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("list_type", sa.String(20), server_default=sa.text("'static'")),
        sa.Column("source", sa.String(50), nullable=True),
        sa.Column("lead_count", sa.Integer(), server_default=sa.text("0")),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "business_id", "name", "source", name="uq_lead_lists_business_name_source"
        ),
    )

    op.create_table(
        "lead_list_members",
        _id_column(),
        sa.Column(
            "lead_list_id",
            UUID(as_uuid=True),
            sa.ForeignKey("lead_lists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "lead_id",
            UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("lead_list_id", "lead_id", name="uq_lead_list_members_list_lead"),
    )

    op.create_table(
        "sync_logs",
        _id_column(),
        sa.Column("integration_id", UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", UUID(as_uuid=True), nullable=False),
        sa.Column("sync_type", sa.String(30), server_default=sa.text("'incremental'")),
        sa.Column("sync_status", sa.String(20), server_default=sa.text("'running'")),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("records_processed", sa.Integer(), server_default=sa.text("0")),
        sa.Column("records_created", sa.Integer(), server_default=sa.text("0")),
        sa.Column("records_updated", sa.Integer(), server_default=sa.text("0")),
        sa.Column("records_failed", sa.Integer(), server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", JSON(), nullable=True),
        sa.Column("metadata_json", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_sync_logs_integration_started", "sync_logs", ["integration_id", "started_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_sync_logs_integration_started", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_table("lead_list_members")
    op.drop_table("lead_lists")
    op.drop_table("leads")
    op.drop_index("ix_integrations_type_name_status", table_name="integrations")
    op.drop_table("integrations")
