"""Salesforce OAuth token refresh.

Salesforce does not report access-token expiry, so expiry is detected
reactively: the client sees a 401 and asks TokenManager for a new token.
The refreshed credentials are written back to the integration row before
they are returned, so the retried request and any later run both use the
new token.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import ValidationError

from src.leadsync.config import Settings, get_settings
from src.leadsync.integrations.exceptions import AuthError
from src.leadsync.integrations.repository import SyncRepository
from src.leadsync.integrations.schemas import (
    Credentials,
    Integration,
    TokenRefreshResponse,
)

logger = structlog.get_logger(__name__)

PRODUCTION_LOGIN_URL = "https://login.salesforce.com"
SANDBOX_LOGIN_URL = "https://test.salesforce.com"
TOKEN_PATH = "/services/oauth2/token"


def token_url_for(integration: Integration) -> str:
    """Token endpoint for the integration's org (sandbox or production)."""
    login_url = SANDBOX_LOGIN_URL if integration.config.env == "sandbox" else PRODUCTION_LOGIN_URL
    return f"{login_url}{TOKEN_PATH}"


def is_token_valid(credentials: Credentials) -> bool:
    """Structural check only: both tokens are present.

    A True result does not mean Salesforce will accept the access token.
    """
    return bool(credentials.access_token and credentials.refresh_token)


def needs_token_refresh(response: httpx.Response) -> bool:
    """A 401 from the REST API means the access token expired or was revoked."""
    return response.status_code == 401


class TokenManager:
    """Exchanges a refresh token for a new access token and persists it.

    Args:
        repository: SyncRepository used to persist the refreshed credentials.
        http_client: Shared httpx.AsyncClient.
        settings: Optional Settings override (client id/secret fallback).
    """

    def __init__(
        self,
        repository: SyncRepository,
        http_client: httpx.AsyncClient,
        settings: Settings | None = None,
    ) -> None:
        self._repository = repository
        self._http = http_client
        self._settings = settings or get_settings()

    async def refresh(
        self, integration: Integration, credentials: Credentials | None = None
    ) -> Credentials:
        """Refresh the access token for an integration.

        Args:
            integration: Integration being synced.
            credentials: Current credential snapshot; defaults to the
                integration's stored credentials.

        Returns:
            New Credentials. The refresh token is kept unless Salesforce rotated it.

        Raises:
            AuthError: If client credentials or the refresh token are missing,
                or the token endpoint rejects the request.
        """
        current = credentials or integration.credentials

        client_id = current.client_id or self._settings.SALESFORCE_CLIENT_ID
        client_secret = current.client_secret or self._settings.SALESFORCE_CLIENT_SECRET
        if not client_id or not client_secret:
            raise AuthError("Missing client credentials for token refresh")
        if not current.refresh_token:
            raise AuthError("Missing refresh token for token refresh")

        log = logger.bind(
            integration_id=integration.id,
            business_id=integration.business_id,
        )
        log.info("salesforce.token_refresh_started")

        response = await self._http.post(
            token_url_for(integration),
            data={
                "grant_type": "refresh_token",
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": current.refresh_token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if not response.is_success:
            log.error(
                "salesforce.token_refresh_failed",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise AuthError(f"Token refresh failed: {response.status_code} {response.text}")

        try:
            token_data = TokenRefreshResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthError(f"Token refresh returned an unreadable body: {exc}") from exc

        refreshed = current.model_copy(
            update={
                "access_token": token_data.access_token,
                "token_type": token_data.token_type,
                "refresh_token": token_data.refresh_token or current.refresh_token,
            }
        )

        # Written in the web app's camelCase shape; unknown keys ride along as extras.
        await self._repository.update_integration_credentials(
            integration.id, refreshed.model_dump(by_alias=True, exclude_none=True)
        )

        log.info(
            "salesforce.token_refreshed",
            refresh_token_rotated=bool(token_data.refresh_token)
            and token_data.refresh_token != current.refresh_token,
        )
        return refreshed
