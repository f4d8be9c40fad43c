"""Salesforce REST API client with retry, rate-limit and token refresh handling.

Retry policy per HTTP call (tenacity AsyncRetrying, default 3 attempts):
- 429: wait the provider's Retry-After seconds, then retry
- 5xx: exponential backoff (1s, 2s, 4s, ...), then retry
- transport errors (connect/read/timeouts): same exponential backoff
- anything else is returned to the caller; once attempts run out the last
  error propagates

A 401 triggers exactly one token refresh followed by one more retried call.
A second 401 is fatal for the run.

The client keeps no credential state of its own: query() takes the current
Credentials and returns the (possibly refreshed) ones in a QueryOutcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from src.leadsync.config import Settings, get_settings
from src.leadsync.integrations.exceptions import (
    AuthError,
    RateLimitedError,
    SalesforceAPIError,
    SalesforceSyncError,
    ServerError,
)
from src.leadsync.integrations.salesforce.token_manager import (
    TokenManager,
    needs_token_refresh,
)
from src.leadsync.integrations.schemas import (
    Credentials,
    Integration,
    QueryOutcome,
    QueryResponse,
)

logger = structlog.get_logger(__name__)

_RETRYABLE = (RateLimitedError, ServerError, httpx.TransportError)


def parse_retry_after(value: str | None, default: float) -> float:
    """Parse a Retry-After header given in seconds."""
    if value is None:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


class SalesforceClient:
    """Executes SOQL queries for one integration.

    Safe to construct fresh per integration per run.

    Args:
        integration: Integration providing instance URL, API version and ids.
        token_manager: Used to refresh the access token on a 401.
        http_client: Shared httpx.AsyncClient.
        settings: Optional Settings override (retry count, timeouts).
        sleep: Awaitable sleep used between retries (injectable for tests).
    """

    def __init__(
        self,
        integration: Integration,
        token_manager: TokenManager,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        self._integration = integration
        self._token_manager = token_manager
        self._http = http_client
        self._max_attempts = max(1, settings.SALESFORCE_MAX_RETRIES)
        self._default_retry_after = float(settings.SALESFORCE_DEFAULT_RETRY_AFTER)
        self._timeout = settings.SALESFORCE_REQUEST_TIMEOUT
        self._sleep = sleep
        self._log = logger.bind(
            integration_id=integration.id,
            business_id=integration.business_id,
        )

    # ── Public API ──────────────────────────────────────────────────────────

    async def query(
        self, soql: str, credentials: Credentials | None = None
    ) -> QueryOutcome:
        """Run a SOQL query, following nextRecordsUrl until the result is done.

        Args:
            soql: SOQL query string.
            credentials: Credential snapshot to use; defaults to the
                integration's stored credentials.

        Returns:
            QueryOutcome with all records and the credentials in effect afterwards.

        Raises:
            AuthError: Token refresh failed or the refreshed token was rejected.
            SalesforceAPIError: Non-2xx response after retries.
            httpx.TransportError: Network failure after retries.
        """
        credentials = credentials or self._integration.credentials
        base_url = self._instance_url()
        version = self._integration.config.api_version

        self._log.info("salesforce.query_started", query_length=len(soql))

        response, credentials = await self._get(
            f"{base_url}/services/data/{version}/query",
            credentials,
            params={"q": soql},
        )
        page = QueryResponse.model_validate(response.json())
        total_size = page.total_size
        records = list(page.records)

        while not page.done and page.next_records_url:
            response, credentials = await self._get(
                f"{base_url}{page.next_records_url}", credentials
            )
            page = QueryResponse.model_validate(response.json())
            records.extend(page.records)

        self._log.info(
            "salesforce.query_completed",
            total_size=total_size,
            records_returned=len(records),
        )

        return QueryOutcome(
            response=QueryResponse(total_size=total_size, done=page.done, records=records),
            credentials=credentials,
        )

    # ── Internals ───────────────────────────────────────────────────────────

    def _instance_url(self) -> str:
        instance_url = self._integration.config.instance_url.rstrip("/")
        if not instance_url:
            raise SalesforceSyncError(
                f"Integration {self._integration.id} has no Salesforce instance URL"
            )
        return instance_url

    async def _get(
        self,
        url: str,
        credentials: Credentials,
        params: dict[str, str] | None = None,
    ) -> tuple[httpx.Response, Credentials]:
        """GET with retries and a single refresh-and-retry on 401."""
        response = await self._fetch_with_retry(url, credentials, params)

        if needs_token_refresh(response):
            self._log.info("salesforce.access_token_expired")
            credentials = await self._token_manager.refresh(self._integration, credentials)
            response = await self._fetch_with_retry(url, credentials, params)
            if needs_token_refresh(response):
                raise AuthError(
                    f"Salesforce rejected the refreshed access token: {response.text}"
                )

        if not response.is_success:
            self._log.error(
                "salesforce.query_failed",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise SalesforceAPIError(response.status_code, response.text)

        return response, credentials

    async def _fetch_with_retry(
        self,
        url: str,
        credentials: Credentials,
        params: dict[str, str] | None,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(_RETRYABLE),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._http.get(
                    url,
                    params=params,
                    headers=self._headers(credentials),
                    timeout=self._timeout,
                )
                self._raise_for_retryable(response)
        return response

    def _raise_for_retryable(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            raise RateLimitedError(
                response.status_code,
                response.text,
                retry_after=parse_retry_after(
                    response.headers.get("Retry-After"), self._default_retry_after
                ),
            )
        if 500 <= response.status_code < 600:
            raise ServerError(response.status_code, response.text)

    @staticmethod
    def _retry_wait(retry_state: RetryCallState) -> float:
        """Retry-After for 429s, otherwise 2^(attempt-1) seconds."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError):
            return exc.retry_after
        return float(2 ** (retry_state.attempt_number - 1))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError):
            event = "salesforce.rate_limited"
        elif isinstance(exc, ServerError):
            event = "salesforce.server_error_retry"
        else:
            event = "salesforce.network_error_retry"
        self._log.warning(
            event,
            attempt=retry_state.attempt_number,
            delay_s=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    @staticmethod
    def _headers(credentials: Credentials) -> dict[str, str]:
        return {
            "Authorization": f"{credentials.token_type} {credentials.access_token}",
            "Content-Type": "application/json",
        }
