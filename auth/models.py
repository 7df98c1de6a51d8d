"""
Identity and session-claim models shared by the auth layer.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ExternalIdentity(BaseModel):
    """Snapshot of the third-party account captured at login."""

    model_config = ConfigDict(frozen=True)

    identity_id: str
    email: str
    display_name: str = ""
    account_id: str = ""


class SessionClaims(ExternalIdentity):
    """Claims embedded in a signed session token (epoch seconds)."""

    issued_at: int
    expires_at: int

    def identity(self) -> ExternalIdentity:
        return ExternalIdentity(
            identity_id=self.identity_id,
            email=self.email,
            display_name=self.display_name,
            account_id=self.account_id,
        )


class IdentityContext(ExternalIdentity):
    """Identity attached to an authenticated request."""

    refreshed: bool = False


__all__ = ["ExternalIdentity", "SessionClaims", "IdentityContext"]
