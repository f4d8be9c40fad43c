"""Shared fixtures for lead sync tests.

Provides:
- InMemorySyncRepository: dict-backed stand-in for SyncRepository
- make_integration(): Integration factory with a usable instance URL and tokens
- sf_response(): httpx.Response builder for Salesforce endpoints
- FakeSalesforce: routes query/token calls made through a mocked httpx client

No database or network access.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from src.leadsync.config import Settings
from src.leadsync.integrations.schemas import (
    Credentials,
    Integration,
    IntegrationConfig,
    IntegrationStatus,
)

INSTANCE_URL = "https://acme.my.salesforce.com"
BUSINESS_ID = "6f1c2d8e-3b4a-4c5d-9e7f-0a1b2c3d4e5f"


# ── Repository Double ──────────────────────────────────────────────────────


class InMemorySyncRepository:
    """In-memory SyncRepository with the same async interface.

    fail_upsert_for holds source_ids whose upsert raises, to exercise
    per-record failure accounting. fail_link_with, when set, is raised by
    every membership insert.
    """

    def __init__(self, integrations: list[Integration] | None = None) -> None:
        self.integrations: dict[str, Integration] = {i.id: i for i in integrations or []}
        self.leads: dict[str, dict[str, Any]] = {}
        self._lead_keys: dict[tuple[str, str, str], str] = {}
        self.lists: dict[str, dict[str, Any]] = {}
        self.members: set[tuple[str, str]] = set()
        self.sync_logs: dict[str, dict[str, Any]] = {}
        self.credential_updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_upsert_for: set[str] = set()
        self.fail_link_with: Exception | None = None
        self.fail_discovery: Exception | None = None

    # Integrations

    async def list_active_integrations(
        self, integration_type: str, name: str
    ) -> list[Integration]:
        if self.fail_discovery is not None:
            raise self.fail_discovery
        return [
            i
            for i in self.integrations.values()
            if i.type == integration_type
            and i.name == name
            and i.status == IntegrationStatus.ACTIVE
        ]

    async def update_integration_credentials(
        self, integration_id: str, credentials: dict[str, Any]
    ) -> None:
        self.credential_updates.append((integration_id, credentials))
        current = self.integrations[integration_id]
        self.integrations[integration_id] = current.model_copy(
            update={
                "credentials": Credentials.model_validate(credentials),
                "updated_at": datetime.now(timezone.utc),
            }
        )

    async def update_integration_watermark(
        self, integration_id: str, last_sync_at: datetime
    ) -> None:
        current = self.integrations[integration_id]
        self.integrations[integration_id] = current.model_copy(
            update={"last_sync_at": last_sync_at, "updated_at": datetime.now(timezone.utc)}
        )

    # Leads

    async def find_lead_id(
        self, business_id: str, source: str, source_id: str
    ) -> str | None:
        return self._lead_keys.get((business_id, source, source_id))

    async def upsert_lead(self, values: dict[str, Any]) -> str:
        if values.get("source_id") in self.fail_upsert_for:
            raise RuntimeError(f"upsert rejected for {values['source_id']}")

        key = (values["business_id"], values["source"], values["source_id"])
        lead_id = self._lead_keys.get(key)
        if lead_id is None:
            lead_id = str(uuid.uuid4())
            self._lead_keys[key] = lead_id
            self.leads[lead_id] = {"id": lead_id}
        self.leads[lead_id].update(values)
        return lead_id

    # Lead lists

    async def get_lead_list_id(
        self, business_id: str, name: str, source: str
    ) -> str | None:
        for list_id, row in self.lists.items():
            if (row["business_id"], row["name"], row["source"]) == (business_id, name, source):
                return list_id
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
        list_id = str(uuid.uuid4())
        self.lists[list_id] = {
            "business_id": business_id,
            "name": name,
            "description": description,
            "source": source,
            "color": color,
            "list_type": list_type,
            "lead_count": 0,
        }
        return list_id

    async def add_list_member(self, list_id: str, lead_id: str) -> None:
        if self.fail_link_with is not None:
            raise self.fail_link_with
        self.members.add((list_id, lead_id))

    async def count_list_members(self, list_id: str) -> int:
        return sum(1 for member_list, _ in self.members if member_list == list_id)

    async def update_lead_list_count(self, list_id: str, lead_count: int) -> None:
        self.lists[list_id]["lead_count"] = lead_count

    # Sync logs

    async def create_sync_log(
        self,
        integration_id: str,
        business_id: str,
        started_at: datetime,
        sync_type: str = "incremental",
    ) -> str:
        log_id = str(uuid.uuid4())
        self.sync_logs[log_id] = {
            "integration_id": integration_id,
            "business_id": business_id,
            "sync_type": sync_type,
            "sync_status": "running",
            "started_at": started_at,
        }
        return log_id

    async def finalize_sync_log(self, log_id: str, **fields: Any) -> None:
        row = self.sync_logs[log_id]
        fields["sync_status"] = fields.pop("status").value
        row.update(fields)

    # Test helpers

    def list_named(self, name: str) -> dict[str, Any]:
        return next(row for row in self.lists.values() if row["name"] == name)

    def only_log(self) -> dict[str, Any]:
        assert len(self.sync_logs) == 1
        return next(iter(self.sync_logs.values()))


# ── Factories ───────────────────────────────────────────────────────────────


def make_integration(**overrides: Any) -> Integration:
    """Create an active Salesforce Integration with sensible defaults."""
    defaults: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "business_id": BUSINESS_ID,
        "type": "crm",
        "name": "Salesforce",
        "status": IntegrationStatus.ACTIVE,
        "credentials": Credentials(
            access_token="access-1",
            refresh_token="refresh-1",
            client_id="client-id",
            client_secret="client-secret",
        ),
        "config": IntegrationConfig(instance_url=INSTANCE_URL, api_version="v59.0"),
        "last_sync_at": None,
    }
    defaults.update(overrides)
    return Integration(**defaults)


def make_settings(**overrides: Any) -> Settings:
    """Settings with test-friendly limits and no .env lookups."""
    defaults: dict[str, Any] = {
        "SALESFORCE_CLIENT_ID": "",
        "SALESFORCE_CLIENT_SECRET": "",
        "SALESFORCE_MAX_RETRIES": 3,
        "SALESFORCE_DEFAULT_RETRY_AFTER": 60,
        "MAX_RECORDS_PER_SYNC": 2000,
        "SYNC_RUN_TIMEOUT_SECONDS": 0,
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def sf_response(
    status_code: int,
    json: Any | None = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
    url: str = f"{INSTANCE_URL}/services/data/v59.0/query",
) -> httpx.Response:
    """Build an httpx.Response as returned by the Salesforce API."""
    kwargs: dict[str, Any] = {"headers": headers or {}}
    if json is not None:
        kwargs["json"] = json
    elif text is not None:
        kwargs["text"] = text
    return httpx.Response(status_code, request=httpx.Request("GET", url), **kwargs)


def query_payload(records: list[dict[str, Any]]) -> dict[str, Any]:
    return {"totalSize": len(records), "done": True, "records": records}


def contact_record(sf_id: str, **fields: Any) -> dict[str, Any]:
    record = {
        "attributes": {"type": "Contact"},
        "Id": sf_id,
        "FirstName": "Ada",
        "LastName": "Lovelace",
        "Email": f"{sf_id.lower()}@example.com",
        "Account": {"Name": "Analytical Engines"},
        "SystemModstamp": "2026-03-01T10:00:00.000+0000",
        "LastModifiedDate": "2026-03-01T10:00:00.000+0000",
        "CreatedDate": "2026-01-01T09:00:00.000+0000",
    }
    record.update(fields)
    return record


def lead_record(sf_id: str, **fields: Any) -> dict[str, Any]:
    record = {
        "attributes": {"type": "Lead"},
        "Id": sf_id,
        "FirstName": "Grace",
        "LastName": "Hopper",
        "Email": f"{sf_id.lower()}@example.com",
        "Company": "Navy Labs",
        "Rating": "Hot",
        "IsConverted": False,
        "SystemModstamp": "2026-03-02T11:00:00.000+0000",
        "LastModifiedDate": "2026-03-02T11:00:00.000+0000",
        "CreatedDate": "2026-01-02T09:00:00.000+0000",
    }
    record.update(fields)
    return record


# ── Fake Salesforce ─────────────────────────────────────────────────────────


class FakeSalesforce:
    """Answers query and token calls made through an AsyncMock httpx client.

    contacts / leads are returned for queries against Contact / Lead.
    query_failures are returned (in order) before any successful query.
    """

    def __init__(
        self,
        contacts: list[dict[str, Any]] | None = None,
        leads: list[dict[str, Any]] | None = None,
    ) -> None:
        self.contacts = contacts or []
        self.leads = leads or []
        self.query_failures: list[httpx.Response] = []
        self.queries: list[str] = []
        self.token_calls = 0
        self.http = AsyncMock(spec=httpx.AsyncClient)
        self.http.get.side_effect = self._get
        self.http.post.side_effect = self._post

    async def _get(self, url: str, params: dict[str, str] | None = None, **kwargs: Any):
        if self.query_failures:
            return self.query_failures.pop(0)
        soql = (params or {}).get("q", "")
        self.queries.append(soql)
        records = self.contacts if " FROM Contact " in soql else self.leads
        return sf_response(200, json=query_payload(records), url=url)

    async def _post(self, url: str, **kwargs: Any):
        self.token_calls += 1
        return sf_response(
            200,
            json={"access_token": f"access-{self.token_calls + 1}", "token_type": "Bearer"},
            url=url,
        )


@pytest.fixture
def integration() -> Integration:
    return make_integration()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def repository(integration: Integration) -> InMemorySyncRepository:
    return InMemorySyncRepository([integration])


async def no_sleep(_seconds: float) -> None:
    return None
