"""Unit tests for SalesforceClient retry, refresh and pagination behavior.

The httpx client is an AsyncMock returning canned responses in order; the
retry sleep is recorded instead of awaited.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from src.leadsync.integrations.exceptions import (
    AuthError,
    RateLimitedError,
    SalesforceAPIError,
    SalesforceSyncError,
    ServerError,
)
from src.leadsync.integrations.salesforce.client import SalesforceClient, parse_retry_after
from src.leadsync.integrations.salesforce.token_manager import TokenManager
from src.leadsync.integrations.schemas import Credentials, IntegrationConfig

from conftest import (
    INSTANCE_URL,
    InMemorySyncRepository,
    make_integration,
    make_settings,
    query_payload,
    sf_response,
)

QUERY_URL = f"{INSTANCE_URL}/services/data/v59.0/query"
TOKEN_URL = "https://login.salesforce.com/services/oauth2/token"


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _ok(records=None) -> httpx.Response:
    return sf_response(200, json=query_payload(records or [{"Id": "003A"}]))


def _make_client(get_responses, post_response=None, integration=None, **settings):
    integration = integration or make_integration()
    repo = InMemorySyncRepository([integration])
    http = AsyncMock(spec=httpx.AsyncClient)
    http.get.side_effect = list(get_responses)
    http.post.return_value = post_response or sf_response(
        200, json={"access_token": "access-2", "token_type": "Bearer"}, url=TOKEN_URL
    )
    sleep = SleepRecorder()
    token_manager = TokenManager(repo, http, make_settings(**settings))
    client = SalesforceClient(
        integration, token_manager, http, settings=make_settings(**settings), sleep=sleep
    )
    return client, http, sleep, repo


# ── Retry-After Parsing ─────────────────────────────────────────────────────


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("7", 60) == 7.0

    def test_missing_uses_default(self):
        assert parse_retry_after(None, 60) == 60.0

    def test_unparseable_uses_default(self):
        assert parse_retry_after("soon", 60) == 60.0


# ── Query ───────────────────────────────────────────────────────────────────


class TestQuery:
    async def test_successful_query(self):
        client, http, sleep, _ = _make_client([_ok([{"Id": "003A"}, {"Id": "003B"}])])

        outcome = await client.query("SELECT Id FROM Contact")

        assert [r["Id"] for r in outcome.response.records] == ["003A", "003B"]
        assert outcome.response.total_size == 2
        assert outcome.response.done is True
        assert outcome.credentials.access_token == "access-1"
        assert sleep.calls == []

        args, kwargs = http.get.call_args
        assert args[0] == QUERY_URL
        assert kwargs["params"] == {"q": "SELECT Id FROM Contact"}
        assert kwargs["headers"]["Authorization"] == "Bearer access-1"

    async def test_uses_explicit_credentials(self):
        client, http, _, _ = _make_client([_ok()])

        await client.query(
            "SELECT Id FROM Lead", Credentials(access_token="threaded", refresh_token="r")
        )

        assert http.get.call_args.kwargs["headers"]["Authorization"] == "Bearer threaded"

    async def test_follows_next_records_url(self):
        first = sf_response(
            200,
            json={
                "totalSize": 3,
                "done": False,
                "nextRecordsUrl": "/services/data/v59.0/query/01gNEXT-2000",
                "records": [{"Id": "003A"}, {"Id": "003B"}],
            },
        )
        second = sf_response(200, json=query_payload([{"Id": "003C"}]))
        client, http, _, _ = _make_client([first, second])

        outcome = await client.query("SELECT Id FROM Contact")

        assert [r["Id"] for r in outcome.response.records] == ["003A", "003B", "003C"]
        assert outcome.response.total_size == 3
        assert http.get.call_args_list[1].args[0] == (
            f"{INSTANCE_URL}/services/data/v59.0/query/01gNEXT-2000"
        )

    async def test_missing_instance_url_is_fatal(self):
        integration = make_integration(config=IntegrationConfig(instance_url=""))
        client, http, _, _ = _make_client([_ok()], integration=integration)

        with pytest.raises(SalesforceSyncError, match="instance URL"):
            await client.query("SELECT Id FROM Contact")
        http.get.assert_not_awaited()


# ── Retry Policy ────────────────────────────────────────────────────────────


class TestRetryPolicy:
    async def test_two_server_errors_then_success(self):
        client, http, sleep, _ = _make_client(
            [sf_response(500, text="boom"), sf_response(503, text="busy"), _ok()]
        )

        outcome = await client.query("SELECT Id FROM Contact")

        assert len(outcome.response.records) == 1
        assert http.get.await_count == 3
        assert len(sleep.calls) == 2
        assert sleep.calls == [1.0, 2.0]

    async def test_server_errors_exhaust_retries(self):
        client, http, sleep, _ = _make_client([sf_response(500, text="boom")] * 3)

        with pytest.raises(ServerError) as exc_info:
            await client.query("SELECT Id FROM Contact")

        assert exc_info.value.status_code == 500
        assert http.get.await_count == 3
        assert len(sleep.calls) == 2

    async def test_rate_limit_honors_retry_after(self):
        client, _, sleep, _ = _make_client(
            [sf_response(429, text="slow down", headers={"Retry-After": "5"}), _ok()]
        )

        await client.query("SELECT Id FROM Contact")

        assert sleep.calls == [5.0]

    async def test_rate_limit_without_header_uses_default(self):
        client, _, sleep, _ = _make_client(
            [sf_response(429, text="slow down"), _ok()], SALESFORCE_DEFAULT_RETRY_AFTER=12
        )

        await client.query("SELECT Id FROM Contact")

        assert sleep.calls == [12.0]

    async def test_rate_limit_exhaustion_raises(self):
        client, _, _, _ = _make_client(
            [sf_response(429, text="slow", headers={"Retry-After": "1"})] * 3
        )

        with pytest.raises(RateLimitedError):
            await client.query("SELECT Id FROM Contact")

    async def test_network_error_is_retried(self):
        request = httpx.Request("GET", QUERY_URL)
        client, http, sleep, _ = _make_client(
            [httpx.ConnectError("connection refused", request=request), _ok()]
        )

        outcome = await client.query("SELECT Id FROM Contact")

        assert len(outcome.response.records) == 1
        assert http.get.await_count == 2
        assert sleep.calls == [1.0]

    async def test_client_error_is_fatal_without_retry(self):
        client, http, sleep, _ = _make_client(
            [sf_response(400, json=[{"errorCode": "INVALID_FIELD"}])]
        )

        with pytest.raises(SalesforceAPIError, match="Salesforce query failed: 400") as exc_info:
            await client.query("SELECT Bogus FROM Contact")

        assert "INVALID_FIELD" in exc_info.value.body
        assert http.get.await_count == 1
        assert sleep.calls == []


# ── Token Refresh ───────────────────────────────────────────────────────────


class TestTokenRefreshOn401:
    async def test_single_refresh_then_retry(self):
        client, http, sleep, repo = _make_client(
            [sf_response(401, text="Session expired"), _ok()]
        )

        outcome = await client.query("SELECT Id FROM Contact")

        assert http.post.await_count == 1
        assert http.get.await_count == 2
        assert sleep.calls == []
        assert outcome.credentials.access_token == "access-2"
        assert http.get.call_args.kwargs["headers"]["Authorization"] == "Bearer access-2"
        assert len(repo.credential_updates) == 1

    async def test_second_401_is_fatal(self):
        client, http, _, _ = _make_client(
            [sf_response(401, text="expired"), sf_response(401, text="still expired")]
        )

        with pytest.raises(AuthError, match="refreshed access token"):
            await client.query("SELECT Id FROM Contact")

        assert http.post.await_count == 1

    async def test_refresh_failure_propagates(self):
        client, http, _, _ = _make_client(
            [sf_response(401, text="expired")],
            post_response=sf_response(400, json={"error": "invalid_grant"}, url=TOKEN_URL),
        )

        with pytest.raises(AuthError, match="Token refresh failed"):
            await client.query("SELECT Id FROM Contact")

        assert http.get.await_count == 1
