"""Error taxonomy for CRM lead sync.

Auth failures and non-retryable API errors are fatal to the current run.
RateLimitedError and ServerError are retried inside the Salesforce client
and only escape once retries are exhausted. Per-record problems never
raise; they are counted as failed records.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.leadsync.integrations.schemas import StreamOutcome


class SalesforceSyncError(Exception):
    """Base class for lead sync errors."""


class AuthError(SalesforceSyncError):
    """Credentials are missing, rejected by the token endpoint, or still rejected after refresh."""


class SalesforceAPIError(SalesforceSyncError):
    """Non-2xx response from the Salesforce REST API."""

    def __init__(self, status_code: int, body: str, message: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Salesforce query failed: {status_code} {body}")


class RateLimitedError(SalesforceAPIError):
    """HTTP 429. retry_after is the provider-requested wait in seconds."""

    def __init__(self, status_code: int, body: str, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(status_code, body)


class ServerError(SalesforceAPIError):
    """HTTP 5xx from Salesforce."""


class SyncTimeoutError(SalesforceSyncError):
    """The per-run wall-clock budget ran out before all records were processed."""

    def __init__(self, budget_seconds: float, progress: StreamOutcome) -> None:
        self.budget_seconds = budget_seconds
        self.progress = progress
        super().__init__(
            f"Sync run exceeded its {budget_seconds:g}s budget after "
            f"{progress.processed} records"
        )
