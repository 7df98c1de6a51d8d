"""
CredentialStore — keyed storage of encrypted credential records.

The store is the only stateful piece of the custody subsystem.  Business
logic depends on the abstract interface, so a durable backend can replace
the in-memory one without touching the token manager.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from connectors.models import EncryptedCredentialRecord


class CredentialStore(ABC):
    """Abstract async key/value store, one record per owner."""

    storage_type: str = "unknown"

    @abstractmethod
    async def get(self, owner_id: str) -> Optional[EncryptedCredentialRecord]:
        ...

    @abstractmethod
    async def put(self, record: EncryptedCredentialRecord) -> None:
        """Insert or overwrite the record for ``record.owner_id``."""
        ...

    @abstractmethod
    async def replace(self, record: EncryptedCredentialRecord, expected_updated_at: datetime) -> bool:
        """
        Overwrite the record only if the stored one still carries
        ``expected_updated_at``.  Returns False (and writes nothing) when the
        record was deleted or replaced in the meantime.
        """
        ...

    @abstractmethod
    async def delete(self, owner_id: str) -> bool:
        """Remove the record; returns False if there was none."""
        ...

    @abstractmethod
    async def list(self) -> List[Tuple[str, EncryptedCredentialRecord]]:
        ...

    @abstractmethod
    async def delete_expired(self, cutoff: datetime) -> List[str]:
        """Atomically remove every record with ``expires_at < cutoff``."""
        ...


class InMemoryCredentialStore(CredentialStore):
    """
    Process-local store.  Everything is lost on restart.

    All access goes through one ``asyncio.Lock`` so the request path and
    the reaper share a single lock discipline.
    """

    storage_type = "memory"

    def __init__(self) -> None:
        self._records: Dict[str, EncryptedCredentialRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, owner_id: str) -> Optional[EncryptedCredentialRecord]:
        async with self._lock:
            return self._records.get(owner_id)

    async def put(self, record: EncryptedCredentialRecord) -> None:
        async with self._lock:
            self._records[record.owner_id] = record

    async def replace(self, record: EncryptedCredentialRecord, expected_updated_at: datetime) -> bool:
        async with self._lock:
            current = self._records.get(record.owner_id)
            if current is None or current.updated_at != expected_updated_at:
                return False
            self._records[record.owner_id] = record
            return True

    async def delete(self, owner_id: str) -> bool:
        async with self._lock:
            return self._records.pop(owner_id, None) is not None

    async def list(self) -> List[Tuple[str, EncryptedCredentialRecord]]:
        async with self._lock:
            return list(self._records.items())

    async def delete_expired(self, cutoff: datetime) -> List[str]:
        async with self._lock:
            stale = [
                owner_id
                for owner_id, record in self._records.items()
                if record.expires_at < cutoff
            ]
            for owner_id in stale:
                del self._records[owner_id]
            return stale

    def __len__(self) -> int:
        return len(self._records)
