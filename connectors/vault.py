"""
CredentialVault — encrypts credential secrets on the way into a store and
decrypts them on the way out.

The vault never decides *when* a credential changes; that is the token
manager's job.  It only guarantees that secrets are ciphertext at rest and
that a record which cannot be decrypted looks exactly like a missing one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from connectors.encryption import DecryptionError, TokenCipher
from connectors.models import CredentialSet, EncryptedCredentialRecord
from connectors.store import CredentialStore

logger = logging.getLogger(__name__)


class CredentialVault:
    """Encrypted, keyed credential storage."""

    def __init__(self, store: CredentialStore, cipher: TokenCipher):
        self._store = store
        self._cipher = cipher

    @property
    def storage_type(self) -> str:
        return self._store.storage_type

    def _seal(self, credential: CredentialSet) -> EncryptedCredentialRecord:
        return EncryptedCredentialRecord(
            owner_id=credential.owner_id,
            access_token=self._cipher.encrypt(credential.access_token),
            refresh_token=self._cipher.encrypt(credential.refresh_token),
            expires_at=credential.expires_at,
            scopes=credential.scopes,
            stored_at=credential.stored_at,
            updated_at=credential.updated_at,
        )

    async def put(self, credential: CredentialSet) -> None:
        """
        Encrypt both secrets independently and overwrite any prior entry.

        The entry is keyed by ``credential.owner_id``; the credential carries
        its owner, so there is no separate key argument that could disagree
        with it.
        """
        await self._store.put(self._seal(credential))
        logger.debug("Stored credential identity=%s", credential.owner_id)

    async def replace(self, credential: CredentialSet, expected_updated_at: datetime) -> bool:
        """
        Overwrite the entry only if it is still the version stamped
        ``expected_updated_at``.  False means it was deleted or replaced
        since it was read.
        """
        replaced = await self._store.replace(self._seal(credential), expected_updated_at)
        if not replaced:
            logger.info("Stale credential write dropped identity=%s", credential.owner_id)
        return replaced

    async def get(self, owner_id: str) -> Optional[CredentialSet]:
        """Return a plaintext copy, or None if absent or undecryptable."""
        record = await self._store.get(owner_id)
        if record is None:
            return None
        return self._open(record)

    async def delete(self, owner_id: str) -> bool:
        return await self._store.delete(owner_id)

    async def list(self) -> List[Tuple[str, CredentialSet]]:
        """Decrypted view of every entry; unreadable ones are skipped."""
        result = []
        for owner_id, record in await self._store.list():
            credential = self._open(record)
            if credential is not None:
                result.append((owner_id, credential))
        return result

    async def expirations(self) -> List[Tuple[str, datetime]]:
        """``(owner_id, expires_at)`` for every entry, readable or not."""
        return [(owner_id, record.expires_at) for owner_id, record in await self._store.list()]

    async def purge_expired(self, cutoff: datetime) -> List[str]:
        return await self._store.delete_expired(cutoff)

    def _open(self, record: EncryptedCredentialRecord) -> Optional[CredentialSet]:
        try:
            access_token = self._cipher.decrypt(record.access_token)
            refresh_token = self._cipher.decrypt(record.refresh_token)
        except DecryptionError as exc:
            logger.warning(
                "Credential unreadable identity=%s kind=decryption_error: %s",
                record.owner_id,
                exc,
            )
            return None

        return CredentialSet(
            owner_id=record.owner_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=record.expires_at,
            scopes=record.scopes,
            stored_at=record.stored_at,
            updated_at=record.updated_at,
        )
