"""Pydantic schemas for CRM lead sync.

Defines the structured types shared by the sync components:
- Enums: IntegrationStatus, SyncStatus, QualityRating, LeadSource
- Integration: Credentials, IntegrationConfig, Integration
- Provider payloads: QueryResponse, QueryOutcome, TokenRefreshResponse
- Run results: StreamOutcome, SyncMetadata, SyncResult, SyncCycleResponse

Provider records (Salesforce Contact / Lead) stay plain dicts: they only
live for one fetch-and-map cycle and their field set varies with the
org's field-level security.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class IntegrationStatus(str, Enum):
    """Lifecycle status of a connected integration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    NEEDS_ATTENTION = "needs_attention"
    ERROR = "error"


class SyncStatus(str, Enum):
    """Status of a sync run (sync_logs.sync_status)."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class QualityRating(str, Enum):
    """Lead temperature derived from the provider rating."""

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    UNRATED = "unrated"


class LeadSource(str, Enum):
    """Provenance of a lead row (leads.source)."""

    SALESFORCE_CONTACT = "salesforce_contact"
    SALESFORCE_LEAD = "salesforce_lead"


# ── Integration ─────────────────────────────────────────────────────────────


class Credentials(BaseModel):
    """OAuth credential snapshot for one integration.

    Immutable: a token refresh produces a new Credentials value instead of
    mutating the one a client was built with. The blob is shared with the
    web app's OAuth callback, which writes camelCase keys: both spellings
    are read, camelCase is written back, and keys this model does not know
    about are carried through untouched.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str = Field(
        default="",
        validation_alias=AliasChoices("access_token", "accessToken"),
        serialization_alias="accessToken",
    )
    refresh_token: str = Field(
        default="",
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
        serialization_alias="refreshToken",
    )
    token_type: str = Field(
        default="Bearer",
        validation_alias=AliasChoices("token_type", "tokenType"),
        serialization_alias="tokenType",
    )
    client_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("client_id", "clientId"),
        serialization_alias="clientId",
    )
    client_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("client_secret", "clientSecret"),
        serialization_alias="clientSecret",
    )


class IntegrationConfig(BaseModel):
    """Provider connection settings stored on the integration row."""

    instance_url: str = Field(
        default="", validation_alias=AliasChoices("instance_url", "instanceUrl")
    )
    api_version: str = Field(
        default="v59.0", validation_alias=AliasChoices("api_version", "apiVersion")
    )
    sync_enabled: bool | None = Field(
        default=None, validation_alias=AliasChoices("sync_enabled", "syncEnabled")
    )
    sync_interval: int | None = Field(
        default=None, validation_alias=AliasChoices("sync_interval", "syncInterval")
    )
    env: str = "production"


class Integration(BaseModel):
    """Integration row as seen by the sync core."""

    id: str
    business_id: str
    type: str = "crm"
    name: str = "Salesforce"
    status: IntegrationStatus = IntegrationStatus.ACTIVE
    credentials: Credentials = Field(default_factory=Credentials)
    config: IntegrationConfig = Field(default_factory=IntegrationConfig)
    last_sync_at: datetime | None = None
    updated_at: datetime | None = None


# ── Provider Payloads ───────────────────────────────────────────────────────


class QueryResponse(BaseModel):
    """Salesforce SOQL query response page."""

    total_size: int = Field(
        default=0, validation_alias=AliasChoices("total_size", "totalSize")
    )
    done: bool = True
    next_records_url: str | None = Field(
        default=None, validation_alias=AliasChoices("next_records_url", "nextRecordsUrl")
    )
    records: list[dict[str, Any]] = Field(default_factory=list)


class QueryOutcome(BaseModel):
    """A completed query plus the credentials that were valid when it finished.

    credentials differs from the input snapshot when the query had to
    refresh the access token; callers pass it into their next query.
    """

    model_config = ConfigDict(frozen=True)

    response: QueryResponse
    credentials: Credentials


class TokenRefreshResponse(BaseModel):
    """Salesforce OAuth token endpoint response (refresh_token grant)."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    instance_url: str | None = None
    id: str | None = None
    issued_at: str | None = None
    signature: str | None = None


# ── Run Results ─────────────────────────────────────────────────────────────


class StreamOutcome(BaseModel):
    """Counters for one record stream (contacts or leads) in one run."""

    model_config = ConfigDict(frozen=True)

    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0

    def combine(self, other: StreamOutcome) -> StreamOutcome:
        """Return the element-wise sum of two outcomes."""
        return StreamOutcome(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            failed=self.failed + other.failed,
        )


class SyncMetadata(BaseModel):
    """Per-stream record counts attached to a sync result."""

    contacts_synced: int = 0
    leads_synced: int = 0


class SyncResult(BaseModel):
    """Result of syncing a single integration."""

    integration_id: str
    business_id: str
    status: SyncStatus
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    duration_ms: int = 0
    metadata: SyncMetadata | None = None
    error: str | None = None


class SyncCycleResponse(BaseModel):
    """Summary of one discover-and-sync invocation."""

    ok: bool = True
    synced: int = 0
    results: list[SyncResult] = Field(default_factory=list)
    message: str | None = None
