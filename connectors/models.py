"""
Credential models.

``CredentialSet`` is the plaintext view handed to business logic;
``EncryptedCredentialRecord`` is the only shape a store ever holds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import FrozenSet

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialSet(BaseModel):
    """Live third-party credential for one identity."""

    owner_id: str
    access_token: str
    refresh_token: str = ""
    expires_at: datetime
    scopes: FrozenSet[str] = Field(default_factory=frozenset)
    stored_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return (
            f"CredentialSet(owner_id={self.owner_id!r}, "
            f"expires_at={self.expires_at.isoformat()}, scopes={sorted(self.scopes)!r})"
        )

    __str__ = __repr__


class EncryptedCredentialRecord(BaseModel):
    """At-rest form: token fields are ``iv:ciphertext`` strings."""

    owner_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: FrozenSet[str] = Field(default_factory=frozenset)
    stored_at: datetime
    updated_at: datetime


__all__ = ["CredentialSet", "EncryptedCredentialRecord"]
