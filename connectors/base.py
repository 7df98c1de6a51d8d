"""
BaseConnector — abstract interface for the OAuth2 token provider.

The credential-custody core only ever talks to the provider through this
contract: code exchange at login, refresh, and best-effort revocation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from auth.models import ExternalIdentity


class TokenGrant(BaseModel):
    """Token endpoint response, normalised across providers."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scopes: List[str] = Field(default_factory=list)


# ── Provider errors ─────────────────────────────────────────────────────


class ProviderError(Exception):
    """Base class for token provider failures."""

    kind = "provider_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderRejected(ProviderError):
    """
    The provider refused the grant (e.g. ``invalid_grant``).

    Retrying with the same refresh token cannot succeed.
    """

    kind = "rejected"


class ProviderTransientError(ProviderError):
    """Timeout, 5xx or throttling — a later attempt may succeed."""

    kind = "transient"


class BaseConnector(ABC):
    """Abstract base for OAuth2 token providers."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'zoom'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested by this connector."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque CSRF token echoed back on the callback.
        """
        ...

    @abstractmethod
    async def handle_callback(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        """
        Exchange the authorization code for tokens.

        Invoked once per login by the login flow, never by the custody core.
        """
        ...

    @abstractmethod
    async def fetch_identity(self, access_token: str) -> ExternalIdentity:
        """Look up the account that owns ``access_token``."""
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """
        Trade a refresh token for a new access token.

        Raises
        ------
        ProviderRejected
            The refresh token is dead.
        ProviderTransientError
            Upstream unavailable; the refresh token may still be good.
        """
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if client credentials are present."""
        return True
