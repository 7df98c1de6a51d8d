"""
JWT-style session token creation and verification.

Tokens are base64url-encoded JSON claims signed with HMAC-SHA256.
Secret key is loaded from ``config.session_secret`` (env var: ``SESSION_SECRET``).
Verification is stateless: only the secret is needed.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Callable, Optional

from pydantic import ValidationError

from auth.models import ExternalIdentity, SessionClaims
from config.settings import config


class SessionTokenError(Exception):
    """Token rejected.  ``kind`` is for logs only, never for clients."""

    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        super().__init__(message or kind)


def _b64encode(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    return urlsafe_b64decode(text + "=" * (-len(text) % 4))


class SessionTokenCodec:
    """Issues and verifies signed, time-limited session tokens."""

    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        default_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        secret = config.session_secret if secret is None else secret
        if not secret:
            raise ValueError("session secret must not be empty (set SESSION_SECRET)")
        self._secret = secret.encode()
        self.default_ttl = config.session_ttl_seconds if default_ttl is None else default_ttl
        self._clock = clock

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()

    def issue(self, identity: ExternalIdentity, ttl: Optional[int] = None) -> str:
        """Create a signed token binding ``identity`` for ``ttl`` seconds."""
        now = int(self._clock())
        claims = SessionClaims(
            identity_id=identity.identity_id,
            email=identity.email,
            display_name=identity.display_name,
            account_id=identity.account_id,
            issued_at=now,
            expires_at=now + (self.default_ttl if ttl is None else ttl),
        )
        raw = claims.model_dump_json().encode()
        return _b64encode(raw) + "." + self._sign(raw)

    def verify(self, token: str) -> SessionClaims:
        """
        Verify token and return its claims.

        Raises ``SessionTokenError`` on malformed, forged or expired tokens.
        """
        parts = (token or "").split(".")
        if len(parts) != 2 or not all(parts):
            raise SessionTokenError(SessionTokenError.MALFORMED, "bad format")
        try:
            raw = _b64decode(parts[0])
        except ValueError as exc:
            raise SessionTokenError(SessionTokenError.MALFORMED, "bad encoding") from exc

        if not hmac.compare_digest(parts[1].encode(), self._sign(raw).encode()):
            raise SessionTokenError(SessionTokenError.INVALID_SIGNATURE, "bad signature")

        try:
            claims = SessionClaims.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise SessionTokenError(SessionTokenError.MALFORMED, "bad claims") from exc

        if claims.expires_at <= self._clock():
            raise SessionTokenError(SessionTokenError.EXPIRED, "token expired")
        return claims
