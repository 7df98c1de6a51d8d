"""
ZoomConnector — OAuth2 token provider for Zoom.

Client authentication uses HTTP Basic with the app's client id/secret.
Token endpoint failures are classified so the token manager can tell a
dead refresh token from a flaky upstream.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from auth.models import ExternalIdentity
from config.settings import Settings, config
from connectors.base import (
    BaseConnector,
    ProviderError,
    ProviderRejected,
    ProviderTransientError,
    TokenGrant,
)

logger = logging.getLogger(__name__)

# Zoom OAuth2 endpoints
_ZOOM_AUTH_URL = "https://zoom.us/oauth/authorize"
_ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"
_ZOOM_REVOKE_URL = "https://zoom.us/oauth/revoke"
_ZOOM_USERINFO_URL = "https://api.zoom.us/v2/users/me"

_DEFAULT_SCOPES = ["meeting:read", "meeting:write", "user:read"]


def classify_response(resp: httpx.Response) -> Optional[ProviderError]:
    """Map a token endpoint response onto the provider error taxonomy."""
    if resp.is_success:
        return None
    try:
        body = resp.json()
        reason = body.get("error") or body.get("reason") or resp.reason_phrase
    except ValueError:
        reason = resp.reason_phrase
    message = f"token endpoint returned {resp.status_code}: {reason}"
    if resp.status_code == 429 or resp.status_code >= 500:
        return ProviderTransientError(message, resp.status_code)
    return ProviderRejected(message, resp.status_code)


class ZoomConnector(BaseConnector):
    """OAuth2 connector for Zoom."""

    def __init__(self, settings: Settings = config, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "zoom"

    @property
    def scopes(self) -> List[str]:
        return list(_DEFAULT_SCOPES)

    def is_configured(self) -> bool:
        return bool(self._settings.zoom_client_id and self._settings.zoom_client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            auth=(self._settings.zoom_client_id, self._settings.zoom_client_secret),
            timeout=self._settings.refresh_timeout_seconds,
            transport=self._transport,
        )

    def get_auth_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._settings.zoom_client_id,
            "redirect_uri": self._settings.zoom_redirect_uri,
            "state": state,
            "scope": " ".join(self.scopes),
        }
        return f"{_ZOOM_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict) -> TokenGrant:
        try:
            async with self._client() as client:
                resp = await client.post(_ZOOM_TOKEN_URL, data=data)
        except httpx.TimeoutException as exc:
            raise ProviderTransientError(f"token endpoint timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderTransientError(f"token endpoint unreachable: {exc}") from exc

        error = classify_response(resp)
        if error is not None:
            raise error

        payload = resp.json()
        return TokenGrant(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in", 3600),
            scopes=payload.get("scope", "").split(),
        )

    async def handle_callback(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        """Exchange auth code for tokens."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self._settings.zoom_redirect_uri,
            }
        )

    async def fetch_identity(self, access_token: str) -> ExternalIdentity:
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.get(
                _ZOOM_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            resp.raise_for_status()
            user = resp.json()

        return ExternalIdentity(
            identity_id=user["id"],
            email=user.get("email", ""),
            display_name=user.get("display_name", ""),
            account_id=user.get("account_id", ""),
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Use refresh token to get a new access token."""
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def revoke_token(self, access_token: str) -> bool:
        """Revoke the token at Zoom."""
        async with self._client() as client:
            resp = await client.post(_ZOOM_REVOKE_URL, data={"token": access_token})
        if not resp.is_success:
            logger.debug("Zoom revoke returned %s", resp.status_code)
        return resp.is_success
