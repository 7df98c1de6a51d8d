"""
Token manager — get / refresh / revoke / reap per-identity OAuth tokens.

This is the single interface the rest of the service uses to obtain a live
access token for an identity.  It owns every mutation of a credential; the
vault underneath only encrypts and stores.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional

from config.settings import config
from connectors.base import (
    BaseConnector,
    ProviderRejected,
    ProviderTransientError,
    TokenGrant,
)
from connectors.models import CredentialSet
from connectors.vault import CredentialVault

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshStatus(str, Enum):
    OK = "ok"
    PERMANENT = "permanent"   # refresh token dead, credential deleted
    TRANSIENT = "transient"   # upstream trouble, credential kept
    MISSING = "missing"       # nothing to refresh


@dataclass(frozen=True)
class TokenStats:
    total: int
    valid: int
    expired: int
    storage_type: str


class TokenLifecycleManager:
    """Business rules for stored third-party credentials."""

    def __init__(
        self,
        vault: CredentialVault,
        provider: BaseConnector,
        *,
        refresh_window: Optional[timedelta] = None,
        refresh_timeout: Optional[float] = None,
        grace_period: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._vault = vault
        self._provider = provider
        if refresh_window is None:
            refresh_window = timedelta(seconds=config.refresh_window_seconds)
        if refresh_timeout is None:
            refresh_timeout = config.refresh_timeout_seconds
        if grace_period is None:
            grace_period = timedelta(seconds=config.cleanup_grace_seconds)
        self.refresh_window = refresh_window
        self.refresh_timeout = refresh_timeout
        self.grace_period = grace_period
        self._clock = clock
        self._inflight: Dict[str, "asyncio.Task[RefreshStatus]"] = {}
        # serialises refresh, revoke and login writes for one identity
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, owner_id: str) -> asyncio.Lock:
        lock = self._locks.get(owner_id)
        if lock is None:
            lock = self._locks[owner_id] = asyncio.Lock()
        return lock

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_credentials(self, owner_id: str) -> Optional[CredentialSet]:
        return await self._vault.get(owner_id)

    def needs_refresh(self, credential: CredentialSet) -> bool:
        return credential.expires_at - self._clock() < self.refresh_window

    def is_expired(self, credential: CredentialSet) -> bool:
        return credential.expires_at <= self._clock()

    async def get_valid_access_token(self, owner_id: str) -> Optional[str]:
        """
        Get a usable access token for ``owner_id``.

        1. Look up the credential; absent → None.
        2. If it expires within the refresh window, refresh it.
        3. Return the (possibly new) access token.  A failed refresh yields
           None, except that a transient failure still serves the current
           token while it has not actually expired.
        """
        credential = await self._vault.get(owner_id)
        if credential is None:
            logger.debug("No credential identity=%s", owner_id)
            return None

        if not self.needs_refresh(credential):
            return credential.access_token

        status = await self.refresh(owner_id, force=False)
        if status is RefreshStatus.OK:
            refreshed = await self._vault.get(owner_id)
            return refreshed.access_token if refreshed else None

        if status is RefreshStatus.TRANSIENT and not self.is_expired(credential):
            # next call inside the window tries again
            logger.info("Serving current token after transient refresh failure identity=%s", owner_id)
            return credential.access_token
        return None

    # ── Writes ──────────────────────────────────────────────────────────

    async def store_credentials(self, owner_id: str, grant: TokenGrant) -> CredentialSet:
        """Persist the result of a login-time code exchange, replacing any prior one."""
        now = self._clock()
        credential = CredentialSet(
            owner_id=owner_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or "",
            expires_at=now + timedelta(seconds=grant.expires_in),
            scopes=frozenset(grant.scopes),
            stored_at=now,
            updated_at=now,
        )
        async with self._lock_for(owner_id):
            await self._vault.put(credential)
        logger.info("Stored %s credential identity=%s", self._provider.provider_name, owner_id)
        return credential

    async def refresh(self, owner_id: str, *, force: bool = True) -> RefreshStatus:
        """
        Refresh the access token for ``owner_id``.

        At most one provider call per identity is in flight: concurrent
        callers await the same task.  With ``force=False`` the shared task
        skips the provider call when the stored credential is already fresh.
        """
        task = self._inflight.get(owner_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh_once(owner_id, force))
            self._inflight[owner_id] = task

            def _release(done: "asyncio.Task[RefreshStatus]") -> None:
                if self._inflight.get(owner_id) is done:
                    del self._inflight[owner_id]

            task.add_done_callback(_release)
        else:
            logger.debug("Joining in-flight refresh identity=%s", owner_id)

        return await asyncio.shield(task)

    async def _refresh_once(self, owner_id: str, force: bool) -> RefreshStatus:
        async with self._lock_for(owner_id):
            return await self._refresh_locked(owner_id, force)

    async def _refresh_locked(self, owner_id: str, force: bool) -> RefreshStatus:
        credential = await self._vault.get(owner_id)
        if credential is None:
            return RefreshStatus.MISSING

        if not force and not self.needs_refresh(credential):
            return RefreshStatus.OK

        if not credential.refresh_token:
            logger.warning("No refresh token, dropping credential identity=%s", owner_id)
            await self._vault.delete(owner_id)
            return RefreshStatus.MISSING

        try:
            grant = await asyncio.wait_for(
                self._provider.refresh_access_token(credential.refresh_token),
                timeout=self.refresh_timeout,
            )
        except ProviderRejected as exc:
            logger.warning(
                "Token refresh rejected identity=%s kind=%s status=%s, deleting credential",
                owner_id,
                exc.kind,
                exc.status_code,
            )
            await self._vault.delete(owner_id)
            return RefreshStatus.PERMANENT
        except asyncio.TimeoutError:
            logger.warning(
                "Token refresh timed out identity=%s kind=timeout after=%.1fs",
                owner_id,
                self.refresh_timeout,
            )
            return RefreshStatus.TRANSIENT
        except ProviderTransientError as exc:
            logger.warning(
                "Token refresh failed identity=%s kind=%s status=%s",
                owner_id,
                exc.kind,
                exc.status_code,
            )
            return RefreshStatus.TRANSIENT
        except Exception:
            logger.exception("Token refresh error identity=%s kind=unexpected", owner_id)
            return RefreshStatus.TRANSIENT

        now = self._clock()
        updated = credential.model_copy(
            update={
                "access_token": grant.access_token,
                # Some providers rotate refresh tokens
                "refresh_token": grant.refresh_token or credential.refresh_token,
                "expires_at": now + timedelta(seconds=grant.expires_in),
                "scopes": frozenset(grant.scopes) if grant.scopes else credential.scopes,
                "updated_at": now,
            }
        )
        if not await self._vault.replace(updated, credential.updated_at):
            # reaped while the provider call was out
            return RefreshStatus.MISSING
        logger.info("Refreshed %s token identity=%s", self._provider.provider_name, owner_id)
        return RefreshStatus.OK

    async def revoke(self, owner_id: str) -> bool:
        """
        Revoke at the provider (best effort) and delete locally.
        Returns False if there was nothing stored.

        Holds the identity's lock, so a refresh already in flight finishes
        first and its result is what gets revoked; a refresh queued behind
        finds nothing to refresh.
        """
        async with self._lock_for(owner_id):
            credential = await self._vault.get(owner_id)
            if credential is not None:
                try:
                    await self._provider.revoke_token(credential.access_token)
                except Exception as exc:
                    logger.warning(
                        "Provider revocation failed identity=%s kind=%s: %s",
                        owner_id,
                        getattr(exc, "kind", type(exc).__name__),
                        exc,
                    )

            deleted = await self._vault.delete(owner_id)
        if deleted:
            logger.info("Revoked credential identity=%s", owner_id)
        return deleted

    async def cleanup(self) -> int:
        """Delete credentials that expired more than ``grace_period`` ago."""
        cutoff = self._clock() - self.grace_period
        removed = await self._vault.purge_expired(cutoff)
        for owner_id in removed:
            lock = self._locks.get(owner_id)
            if lock is not None and not lock.locked():
                del self._locks[owner_id]
            logger.info("Reaped expired credential identity=%s", owner_id)
        if removed:
            logger.info("Cleanup removed %d expired credentials", len(removed))
        return len(removed)

    async def get_token_stats(self) -> TokenStats:
        now = self._clock()
        expirations = await self._vault.expirations()
        valid = sum(1 for _, expires_at in expirations if now < expires_at)
        return TokenStats(
            total=len(expirations),
            valid=valid,
            expired=len(expirations) - valid,
            storage_type=self._vault.storage_type,
        )
