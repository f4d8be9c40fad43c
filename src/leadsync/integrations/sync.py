"""Incremental Salesforce -> lead store sync orchestrator.

Drives one run per active, sync-enabled Salesforce integration:

    discovered -> running -> success | partial | failed

Each run fetches Contacts then Leads modified after the integration's
watermark, maps and upserts every record independently, links the
resulting leads into the two provenance-tagged lists, recounts those
lists once, advances the watermark and finalizes the run log.

Integrations are processed strictly one at a time. A per-record failure
only increments the failed counter; a run-level failure finalizes the
run log as failed, leaves the watermark untouched and is re-raised so
the cycle can report it without affecting other integrations.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from src.leadsync.config import Settings, get_settings
from src.leadsync.core.monitoring import record_sync_run
from src.leadsync.integrations.exceptions import SyncTimeoutError
from src.leadsync.integrations.list_manager import ListManager
from src.leadsync.integrations.repository import SyncRepository
from src.leadsync.integrations.salesforce.client import SalesforceClient
from src.leadsync.integrations.salesforce.mapper import (
    build_contact_query,
    build_lead_query,
    is_valid_contact,
    is_valid_lead,
    map_contact,
    map_lead,
    record_modstamp,
    sanitize,
)
from src.leadsync.integrations.salesforce.token_manager import TokenManager
from src.leadsync.integrations.schemas import (
    Integration,
    StreamOutcome,
    SyncCycleResponse,
    SyncMetadata,
    SyncResult,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

INTEGRATION_TYPE = "crm"
INTEGRATION_NAME = "Salesforce"
METRICS_PROVIDER = "salesforce"

CONTACTS_LIST_NAME = "Salesforce Contacts"
CONTACTS_LIST_DESCRIPTION = "Automatically synced from Salesforce Contacts"
LEADS_LIST_NAME = "Salesforce Leads"
LEADS_LIST_DESCRIPTION = "Automatically synced from Salesforce Leads"

NO_ACTIVE_MESSAGE = "no active integrations"
NO_ENABLED_MESSAGE = "no integrations with sync enabled"

_CREATED = "created"
_UPDATED = "updated"
_FAILED = "failed"


# ── Pure Helpers ────────────────────────────────────────────────────────────


def tally(outcome: StreamOutcome, result: str) -> StreamOutcome:
    """Return outcome with one more processed record counted under result."""
    return outcome.combine(
        StreamOutcome(
            processed=1,
            created=int(result == _CREATED),
            updated=int(result == _UPDATED),
            failed=int(result == _FAILED),
        )
    )


def classify_run_status(outcome: StreamOutcome) -> SyncStatus:
    """failed when nothing succeeded, partial when some records failed, else success."""
    if outcome.failed > 0 and outcome.created == 0 and outcome.updated == 0:
        return SyncStatus.FAILED
    if outcome.failed > 0:
        return SyncStatus.PARTIAL
    return SyncStatus.SUCCESS


def stream_watermark(
    records: list[dict[str, Any]], limit: int, completed_at: datetime
) -> datetime:
    """Watermark candidate for one stream.

    A stream that filled the row cap may have more records waiting, so its
    candidate is the newest SystemModstamp it actually returned. A stream
    that came back short of the cap was exhausted and can move to completed_at.
    """
    if len(records) < limit:
        return completed_at
    stamps = [stamp for stamp in (record_modstamp(r) for r in records) if stamp]
    return max(stamps) if stamps else completed_at


def next_watermark(
    contacts: list[dict[str, Any]],
    leads: list[dict[str, Any]],
    limit: int,
    completed_at: datetime,
) -> datetime:
    """Earliest of the two stream candidates, so neither stream skips records."""
    return min(
        stream_watermark(contacts, limit, completed_at),
        stream_watermark(leads, limit, completed_at),
    )


def is_sync_enabled(integration: Integration) -> bool:
    """Sync is on unless the config explicitly sets it to false."""
    return integration.config.sync_enabled is not False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Orchestrator ────────────────────────────────────────────────────────────


class SyncOrchestrator:
    """Discover Salesforce integrations and sync each one sequentially.

    Args:
        repository: SyncRepository for integrations, leads, lists and run logs.
        http_client: Shared httpx.AsyncClient for token and query calls.
        settings: Optional Settings override.
        clock: Returns the current UTC time (injectable for tests).
        monotonic: Monotonic seconds used for the run budget.
        sleep: Retry sleep passed to each SalesforceClient.
    """

    def __init__(
        self,
        repository: SyncRepository,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._repository = repository
        self._http = http_client
        self._settings = settings or get_settings()
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._token_manager = TokenManager(repository, http_client, self._settings)
        self._lists = ListManager(repository)

    async def discover(self) -> list[Integration]:
        """Active Salesforce CRM integrations whose sync is not disabled."""
        _, enabled = await self._discover()
        return enabled

    async def _discover(self) -> tuple[int, list[Integration]]:
        integrations = await self._repository.list_active_integrations(
            INTEGRATION_TYPE, INTEGRATION_NAME
        )
        enabled = [i for i in integrations if is_sync_enabled(i)]
        logger.info(
            "sync.discovered",
            active=len(integrations),
            enabled=len(enabled),
        )
        return len(integrations), enabled

    async def run_sync_cycle(self) -> SyncCycleResponse:
        """Sync every discovered integration, one at a time.

        A failing integration is reported as a failed SyncResult; the
        remaining integrations still run. Discovery errors propagate.
        """
        active, integrations = await self._discover()
        if not active:
            return SyncCycleResponse(ok=True, synced=0, results=[], message=NO_ACTIVE_MESSAGE)
        if not integrations:
            return SyncCycleResponse(ok=True, synced=0, results=[], message=NO_ENABLED_MESSAGE)

        results: list[SyncResult] = []
        for integration in integrations:
            try:
                results.append(await self.sync_integration(integration))
            except Exception as exc:
                results.append(self._failed_result(integration, exc))

        logger.info(
            "sync.cycle_completed",
            synced=len(results),
            failed=sum(1 for r in results if r.status == SyncStatus.FAILED),
        )
        return SyncCycleResponse(ok=True, synced=len(results), results=results)

    async def sync_integration(self, integration: Integration) -> SyncResult:
        """Run one incremental sync for an integration.

        Raises:
            Exception: Any run-level failure, after the run log has been
                finalized as failed. The watermark is left unchanged.
        """
        log = logger.bind(integration_id=integration.id, business_id=integration.business_id)
        started_at = self._clock()
        deadline = self._deadline()
        log_id = await self._repository.create_sync_log(
            integration.id, integration.business_id, started_at
        )
        log.info("sync.integration_started", log_id=log_id, last_sync_at=integration.last_sync_at)

        try:
            limit = self._settings.MAX_RECORDS_PER_SYNC
            client = SalesforceClient(
                integration,
                self._token_manager,
                self._http,
                settings=self._settings,
                sleep=self._sleep,
            )

            contacts_result = await client.query(
                build_contact_query(integration.last_sync_at, limit), integration.credentials
            )
            leads_result = await client.query(
                build_lead_query(integration.last_sync_at, limit), contacts_result.credentials
            )
            contacts = contacts_result.response.records
            leads = leads_result.response.records

            contacts_list_id = await self._lists.ensure_list(
                integration.business_id, CONTACTS_LIST_NAME, CONTACTS_LIST_DESCRIPTION
            )
            leads_list_id = await self._lists.ensure_list(
                integration.business_id, LEADS_LIST_NAME, LEADS_LIST_DESCRIPTION
            )

            contact_outcome = await self._process_stream(
                contacts,
                integration.business_id,
                contacts_list_id,
                is_valid=is_valid_contact,
                mapper=map_contact,
                deadline=deadline,
                prior=StreamOutcome(),
            )
            lead_outcome = await self._process_stream(
                leads,
                integration.business_id,
                leads_list_id,
                is_valid=is_valid_lead,
                mapper=map_lead,
                deadline=deadline,
                prior=contact_outcome,
            )

            await self._lists.recount([contacts_list_id, leads_list_id])

            completed_at = self._clock()
            watermark = next_watermark(contacts, leads, limit, completed_at)
            await self._repository.update_integration_watermark(integration.id, watermark)

            outcome = contact_outcome.combine(lead_outcome)
            status = classify_run_status(outcome)
            duration_ms = _duration_ms(started_at, completed_at)
            metadata = SyncMetadata(contacts_synced=len(contacts), leads_synced=len(leads))

            await self._repository.finalize_sync_log(
                log_id,
                status=status,
                completed_at=completed_at,
                duration_ms=duration_ms,
                records_processed=outcome.processed,
                records_created=outcome.created,
                records_updated=outcome.updated,
                records_failed=outcome.failed,
                metadata=metadata.model_dump(),
            )
        except Exception as exc:
            await self._record_failure(integration, log_id, started_at, exc)
            raise

        record_sync_run(
            METRICS_PROVIDER,
            status.value,
            outcome.created,
            outcome.updated,
            outcome.failed,
            duration_ms,
        )
        log.info(
            "sync.integration_completed",
            status=status.value,
            processed=outcome.processed,
            created=outcome.created,
            updated=outcome.updated,
            failed=outcome.failed,
            duration_ms=duration_ms,
            watermark=watermark.isoformat(),
        )

        return SyncResult(
            integration_id=integration.id,
            business_id=integration.business_id,
            status=status,
            records_processed=outcome.processed,
            records_created=outcome.created,
            records_updated=outcome.updated,
            records_failed=outcome.failed,
            duration_ms=duration_ms,
            metadata=metadata,
        )

    # ── Record Processing ───────────────────────────────────────────────────

    async def _process_stream(
        self,
        records: list[dict[str, Any]],
        business_id: str,
        list_id: str,
        *,
        is_valid: Callable[[dict[str, Any]], bool],
        mapper: Callable[[dict[str, Any], str], dict[str, Any]],
        deadline: float | None,
        prior: StreamOutcome,
    ) -> StreamOutcome:
        """Process one stream in fetch order and return its outcome.

        prior holds the counters of streams already processed in this run,
        reported with a SyncTimeoutError if the budget runs out.
        """
        outcome = StreamOutcome()
        for record in records:
            if deadline is not None and self._monotonic() > deadline:
                raise SyncTimeoutError(
                    self._settings.SYNC_RUN_TIMEOUT_SECONDS, prior.combine(outcome)
                )
            result = await self._process_record(record, business_id, list_id, is_valid, mapper)
            outcome = tally(outcome, result)
        return outcome

    async def _process_record(
        self,
        record: dict[str, Any],
        business_id: str,
        list_id: str,
        is_valid: Callable[[dict[str, Any]], bool],
        mapper: Callable[[dict[str, Any], str], dict[str, Any]],
    ) -> str:
        source_id = record.get("Id")
        if not is_valid(record):
            logger.warning("sync.record_invalid", source_id=source_id, business_id=business_id)
            return _FAILED

        try:
            values = sanitize(mapper(record, business_id))
            existing_id = await self._repository.find_lead_id(
                business_id, values["source"], values["source_id"]
            )
            lead_id = await self._repository.upsert_lead(values)
        except Exception as exc:
            logger.error(
                "sync.record_upsert_failed",
                source_id=source_id,
                business_id=business_id,
                error=str(exc),
            )
            return _FAILED

        await self._lists.link(list_id, lead_id)
        return _CREATED if existing_id is None else _UPDATED

    # ── Failure Handling ────────────────────────────────────────────────────

    async def _record_failure(
        self,
        integration: Integration,
        log_id: str,
        started_at: datetime,
        exc: Exception,
    ) -> None:
        completed_at = self._clock()
        duration_ms = _duration_ms(started_at, completed_at)
        progress = exc.progress if isinstance(exc, SyncTimeoutError) else StreamOutcome()

        logger.error(
            "sync.integration_failed",
            integration_id=integration.id,
            business_id=integration.business_id,
            error=str(exc),
            error_type=type(exc).__name__,
            processed=progress.processed,
        )
        await self._repository.finalize_sync_log(
            log_id,
            status=SyncStatus.FAILED,
            completed_at=completed_at,
            duration_ms=duration_ms,
            records_processed=progress.processed,
            records_created=progress.created,
            records_updated=progress.updated,
            records_failed=progress.failed,
            error_message=str(exc),
            error_details={
                "type": type(exc).__name__,
                "stack": "".join(traceback.format_exception(exc)),
            },
        )
        record_sync_run(
            METRICS_PROVIDER,
            SyncStatus.FAILED.value,
            progress.created,
            progress.updated,
            progress.failed,
            duration_ms,
        )

    @staticmethod
    def _failed_result(integration: Integration, exc: Exception) -> SyncResult:
        progress = exc.progress if isinstance(exc, SyncTimeoutError) else StreamOutcome()
        return SyncResult(
            integration_id=integration.id,
            business_id=integration.business_id,
            status=SyncStatus.FAILED,
            records_processed=progress.processed,
            records_created=progress.created,
            records_updated=progress.updated,
            records_failed=progress.failed,
            error=str(exc),
        )

    def _deadline(self) -> float | None:
        budget = self._settings.SYNC_RUN_TIMEOUT_SECONDS
        if not budget or budget <= 0:
            return None
        return self._monotonic() + budget


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return max(0, int((completed_at - started_at).total_seconds() * 1000))
