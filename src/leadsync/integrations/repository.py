"""Sync repository -- async datastore operations used by the sync core.

Provides SyncRepository with the session_factory callable pattern. Each
method opens its own session and commits its own statement, so a failed
upsert for one record never poisons the session used by the next.

Leads are upserted with PostgreSQL INSERT ... ON CONFLICT on the
(business_id, source, source_id) natural key. Only the columns present in
the sparse values dict are written on conflict, so a field the provider
did not return keeps its stored value.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.integrations.models import (
    IntegrationModel,
    LeadListMemberModel,
    LeadListModel,
    LeadModel,
    SyncLogModel,
)
from src.leadsync.integrations.schemas import (
    Credentials,
    Integration,
    IntegrationConfig,
    IntegrationStatus,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

_LEAD_KEY_COLUMNS = frozenset({"business_id", "source", "source_id"})


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_integration(model: IntegrationModel) -> Integration:
    """Convert IntegrationModel to Integration schema."""
    try:
        status = IntegrationStatus(model.status)
    except ValueError:
        status = IntegrationStatus.ERROR

    return Integration(
        id=str(model.id),
        business_id=str(model.business_id),
        type=model.type,
        name=model.name,
        status=status,
        credentials=Credentials.model_validate(model.credentials or {}),
        config=IntegrationConfig.model_validate(model.config or {}),
        last_sync_at=model.last_sync_at,
        updated_at=model.updated_at,
    )


def _lead_row(values: dict[str, Any]) -> dict[str, Any]:
    """Coerce mapped lead values into column values for the insert."""
    columns = LeadModel.__table__.columns.keys()
    row = {key: value for key, value in values.items() if key in columns}
    row["business_id"] = uuid.UUID(str(row["business_id"]))
    return row


def _lead_upsert_statement(row: dict[str, Any]):
    """INSERT .. ON CONFLICT DO UPDATE that merges only the columns present in row.

    Columns missing from a sparse record keep their stored value, and the
    natural key columns are never rewritten.
    """
    stmt = pg_insert(LeadModel).values(**row)
    return stmt.on_conflict_do_update(
        constraint="uq_leads_business_source_source_id",
        set_={key: stmt.excluded[key] for key in row if key not in _LEAD_KEY_COLUMNS},
    ).returning(LeadModel.id)


# ── Repository ──────────────────────────────────────────────────────────────


class SyncRepository:
    """Async persistence for integrations, leads, lead lists and sync logs.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Integrations ────────────────────────────────────────────────────────

    async def list_active_integrations(
        self, integration_type: str, name: str
    ) -> list[Integration]:
        """Return active integrations of the given type/provider name.

        The sync-enabled flag lives inside the config JSON and is filtered
        by the caller.
        """
        async for session in self._session_factory():
            stmt = (
                select(IntegrationModel)
                .where(
                    IntegrationModel.type == integration_type,
                    IntegrationModel.name == name,
                    IntegrationModel.status == IntegrationStatus.ACTIVE.value,
                )
                .order_by(IntegrationModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_integration(m) for m in result.scalars().all()]
        return []

    async def update_integration_credentials(
        self, integration_id: str, credentials: dict[str, Any]
    ) -> None:
        """Replace the integration's credential blob and bump updated_at."""
        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(IntegrationModel.id == uuid.UUID(integration_id))
                .values(credentials=credentials, updated_at=datetime.now(timezone.utc))
            )
            await session.execute(stmt)
            await session.commit()

    async def update_integration_watermark(
        self, integration_id: str, last_sync_at: datetime
    ) -> None:
        """Advance last_sync_at and bump updated_at."""
        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(IntegrationModel.id == uuid.UUID(integration_id))
                .values(last_sync_at=last_sync_at, updated_at=datetime.now(timezone.utc))
            )
            await session.execute(stmt)
            await session.commit()

    # ── Leads ───────────────────────────────────────────────────────────────

    async def find_lead_id(
        self, business_id: str, source: str, source_id: str
    ) -> str | None:
        """Look up a lead by its natural key."""
        async for session in self._session_factory():
            stmt = select(LeadModel.id).where(
                LeadModel.business_id == uuid.UUID(business_id),
                LeadModel.source == source,
                LeadModel.source_id == source_id,
            )
            result = await session.execute(stmt)
            lead_id = result.scalar_one_or_none()
            return str(lead_id) if lead_id is not None else None
        return None

    async def upsert_lead(self, values: dict[str, Any]) -> str:
        """Insert or merge a lead keyed by (business_id, source, source_id).

        Args:
            values: Sanitized lead values; must include the natural key columns.

        Returns:
            The lead's id as a string.
        """
        row = _lead_row(values)
        async for session in self._session_factory():
            result = await session.execute(_lead_upsert_statement(row))
            lead_id = result.scalar_one()
            await session.commit()
            return str(lead_id)
        raise RuntimeError("session factory yielded no session")

    # ── Lead Lists ──────────────────────────────────────────────────────────

    async def get_lead_list_id(
        self, business_id: str, name: str, source: str
    ) -> str | None:
        """Find a list by (business, name, provenance tag)."""
        async for session in self._session_factory():
            stmt = select(LeadListModel.id).where(
                LeadListModel.business_id == uuid.UUID(business_id),
                LeadListModel.name == name,
                LeadListModel.source == source,
            )
            result = await session.execute(stmt)
            list_id = result.scalar_one_or_none()
            return str(list_id) if list_id is not None else None
        return None

    async def create_lead_list(
        self,
        business_id: str,
        name: str,
        description: str,
        source: str,
        color: str,
        list_type: str = "static",
    ) -> str:
        """Create a list, returning the existing id if a concurrent insert won."""
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            stmt = (
                pg_insert(LeadListModel)
                .values(
                    business_id=uuid.UUID(business_id),
                    name=name,
                    description=description,
                    color=color,
                    list_type=list_type,
                    source=source,
                    lead_count=0,
                    last_updated_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(constraint="uq_lead_lists_business_name_source")
                .returning(LeadListModel.id)
            )
            result = await session.execute(stmt)
            list_id = result.scalar_one_or_none()
            await session.commit()
            if list_id is not None:
                return str(list_id)

        logger.info("lead_lists.create_conflict", business_id=business_id, name=name)
        existing = await self.get_lead_list_id(business_id, name, source)
        if existing is None:
            raise RuntimeError(f"lead list {name!r} vanished after conflicting insert")
        return existing

    async def add_list_member(self, list_id: str, lead_id: str) -> None:
        """Insert a membership row; an existing (list, lead) pair is left alone."""
        async for session in self._session_factory():
            stmt = (
                pg_insert(LeadListMemberModel)
                .values(
                    lead_list_id=uuid.UUID(list_id),
                    lead_id=uuid.UUID(lead_id),
                    added_at=datetime.now(timezone.utc),
                )
                .on_conflict_do_nothing(constraint="uq_lead_list_members_list_lead")
            )
            await session.execute(stmt)
            await session.commit()

    async def count_list_members(self, list_id: str) -> int:
        """Count memberships for a list."""
        async for session in self._session_factory():
            stmt = (
                select(func.count())
                .select_from(LeadListMemberModel)
                .where(LeadListMemberModel.lead_list_id == uuid.UUID(list_id))
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())
        return 0

    async def update_lead_list_count(self, list_id: str, lead_count: int) -> None:
        """Write the cached member count and refresh the list timestamps."""
        now = datetime.now(timezone.utc)
        async for session in self._session_factory():
            stmt = (
                update(LeadListModel)
                .where(LeadListModel.id == uuid.UUID(list_id))
                .values(lead_count=lead_count, last_updated_at=now, updated_at=now)
            )
            await session.execute(stmt)
            await session.commit()

    # ── Sync Logs ───────────────────────────────────────────────────────────

    async def create_sync_log(
        self,
        integration_id: str,
        business_id: str,
        started_at: datetime,
        sync_type: str = "incremental",
    ) -> str:
        """Insert a run log row in the running state."""
        async for session in self._session_factory():
            model = SyncLogModel(
                integration_id=uuid.UUID(integration_id),
                business_id=uuid.UUID(business_id),
                sync_type=sync_type,
                sync_status=SyncStatus.RUNNING.value,
                started_at=started_at,
                records_processed=0,
                records_created=0,
                records_updated=0,
                records_failed=0,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return str(model.id)
        raise RuntimeError("session factory yielded no session")

    async def finalize_sync_log(
        self,
        log_id: str,
        *,
        status: SyncStatus,
        completed_at: datetime,
        duration_ms: int,
        records_processed: int = 0,
        records_created: int = 0,
        records_updated: int = 0,
        records_failed: int = 0,
        metadata: dict[str, Any] | None = None,
        error_message: str | None = None,
        error_details: dict[str, Any] | None = None,
    ) -> None:
        """Write the final status, counters and error detail of a run."""
        values: dict[str, Any] = {
            "sync_status": status.value,
            "completed_at": completed_at,
            "duration_ms": duration_ms,
            "records_processed": records_processed,
            "records_created": records_created,
            "records_updated": records_updated,
            "records_failed": records_failed,
        }
        if metadata is not None:
            values["metadata_json"] = metadata
        if error_message is not None:
            values["error_message"] = error_message
            values["error_details"] = error_details or {}

        async for session in self._session_factory():
            stmt = (
                update(SyncLogModel)
                .where(SyncLogModel.id == uuid.UUID(log_id))
                .values(**values)
            )
            await session.execute(stmt)
            await session.commit()
