"""Lead sync persistence models.

Five SQLAlchemy models on the shared declarative Base:
- IntegrationModel: One connected CRM account per business (credentials, config, watermark)
- LeadModel: Unified lead record, unique per (business_id, source, source_id)
- LeadListModel: Named lead grouping; provider-synced lists carry a source tag
- LeadListMemberModel: Many-to-many join between lists and leads
- SyncLogModel: One row per integration per sync run (running -> final status)
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.leadsync.core.database import Base


class IntegrationModel(Base):
    """Connected provider account for a business.

    credentials holds the OAuth token pair (and optionally the connected
    app's client id/secret); config holds the instance URL, API version and
    sync flags. last_sync_at is the exclusive lower bound of the next
    incremental fetch.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        Index("ix_integrations_type_name_status", "type", "name", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    business_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default="active", server_default=text("'active'")
    )
    credentials: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    config: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class LeadModel(Base):
    """Unified lead record.

    The (business_id, source, source_id) triple is the natural key used
    for idempotent upserts from provider syncs.
    """

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint(
            "business_id",
            "source",
            "source_id",
            name="uq_leads_business_source_source_id",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    business_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_metadata: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )

    # Contact
    first_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Address
    street: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Organization
    company: Mapped[str | None] = mapped_column(String(300), nullable=True)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    department: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Quality
    lead_score: Mapped[int] = mapped_column(
        Integer, default=50, server_default=text("50")
    )
    quality_rating: Mapped[str] = mapped_column(
        String(20), default="unrated", server_default=text("'unrated'")
    )

    # Communication preferences
    do_not_call: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    do_not_email: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    email_opt_out: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )

    # Sync bookkeeping
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    sync_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class LeadListModel(Base):
    """Named lead grouping with a cached member count."""

    __tablename__ = "lead_lists"
    __table_args__ = (
        UniqueConstraint(
            "business_id",
            "name",
            "source",
            name="uq_lead_lists_business_name_source",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    business_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    list_type: Mapped[str] = mapped_column(
        String(20), default="static", server_default=text("'static'")
    )
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lead_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    last_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class LeadListMemberModel(Base):
    """Membership of a lead in a list. One row per (list, lead)."""

    __tablename__ = "lead_list_members"
    __table_args__ = (
        UniqueConstraint(
            "lead_list_id",
            "lead_id",
            name="uq_lead_list_members_list_lead",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    lead_list_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("lead_lists.id", ondelete="CASCADE"),
        nullable=False,
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SyncLogModel(Base):
    """Audit row for one integration sync run.

    Inserted with sync_status='running' when the run starts and finalized
    exactly once. Rows stuck in 'running' indicate a crashed run.
    """

    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_integration_started", "integration_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    business_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    sync_type: Mapped[str] = mapped_column(
        String(30), default="incremental", server_default=text("'incremental'")
    )
    sync_status: Mapped[str] = mapped_column(
        String(20), default="running", server_default=text("'running'")
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    records_processed: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    records_created: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    records_updated: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    records_failed: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    metadata_json: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
