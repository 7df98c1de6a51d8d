"""
RequestAuthGate — per-request authentication and authorization.

Pipeline:
  1. a session token is present (cookie or ``Authorization: Bearer``)
  2. the token's signature and expiry verify
  3. a credential is stored for the identity
  4. if that credential is about to expire, it refreshes successfully
  5. the identity is handed to the route

Any failure raises one of the ``auth.errors`` rejections.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from auth.errors import (
    AuthError,
    AuthRequired,
    CredentialsExpired,
    CredentialsMissing,
    PermissionDenied,
    TokenInvalid,
)
from auth.jwt import SessionTokenCodec, SessionTokenError
from auth.models import IdentityContext
from config.settings import config
from connectors.token_manager import RefreshStatus, TokenLifecycleManager

logger = logging.getLogger(__name__)


class RequestAuthGate:
    """Composes the session codec and the token manager into one check."""

    def __init__(
        self,
        codec: SessionTokenCodec,
        manager: TokenLifecycleManager,
        *,
        cookie_name: Optional[str] = None,
    ):
        self._codec = codec
        self._manager = manager
        self.cookie_name = cookie_name or config.session_cookie_name

    def extract_token(
        self,
        cookies: Mapping[str, str],
        authorization: Optional[str] = None,
    ) -> Optional[str]:
        """Cookie first, then ``Authorization: Bearer <token>``."""
        token = cookies.get(self.cookie_name)
        if token:
            return token
        if authorization and authorization.startswith("Bearer "):
            return authorization[7:].strip() or None
        return None

    async def authenticate(self, token: Optional[str]) -> IdentityContext:
        if not token:
            raise AuthRequired()

        try:
            claims = self._codec.verify(token)
        except SessionTokenError as exc:
            logger.info("Session token rejected kind=%s", exc.kind)
            raise TokenInvalid() from exc

        identity_id = claims.identity_id
        credential = await self._manager.get_credentials(identity_id)
        if credential is None:
            logger.warning("No provider credential identity=%s kind=credentials_missing", identity_id)
            raise CredentialsMissing()

        refreshed = False
        if self._manager.needs_refresh(credential):
            status = await self._manager.refresh(identity_id, force=False)
            transient = status is RefreshStatus.TRANSIENT
            if status is RefreshStatus.OK:
                refreshed = True
            elif status is RefreshStatus.MISSING:
                logger.warning(
                    "Credential gone during refresh identity=%s kind=credentials_missing",
                    identity_id,
                )
                raise CredentialsMissing()
            elif transient and not self._manager.is_expired(credential):
                logger.info(
                    "Credential refresh deferred identity=%s kind=transient",
                    identity_id,
                )
            else:
                logger.warning(
                    "Credential refresh failed identity=%s kind=%s",
                    identity_id,
                    status.value,
                )
                raise CredentialsExpired(retryable=transient)

        logger.debug("Authenticated identity=%s", identity_id)
        return IdentityContext(**claims.identity().model_dump(), refreshed=refreshed)

    async def authenticate_optional(self, token: Optional[str]) -> Optional[IdentityContext]:
        """Same pipeline, but any rejection yields an anonymous (None) caller."""
        try:
            return await self.authenticate(token)
        except AuthError as exc:
            if token:
                logger.debug("Optional auth fell back to anonymous kind=%s", exc.code)
            return None

    async def authorize(self, identity: IdentityContext, required: Iterable[str]) -> None:
        """Reject unless the identity's credential grants every scope in ``required``."""
        required = set(required)
        if not required:
            return
        credential = await self._manager.get_credentials(identity.identity_id)
        granted = credential.scopes if credential is not None else frozenset()
        missing = required - granted
        if missing:
            logger.warning(
                "Permission denied identity=%s kind=missing_scopes missing=%s",
                identity.identity_id,
                sorted(missing),
            )
            raise PermissionDenied(missing=missing, required=required)
