"""
Shared fixtures: a controllable clock, a scripted token provider, and a
vault backed by the in-memory store.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from auth.models import ExternalIdentity
from connectors.base import BaseConnector, ProviderRejected, TokenGrant
from connectors.encryption import TokenCipher
from connectors.models import CredentialSet
from connectors.store import InMemoryCredentialStore
from connectors.token_manager import TokenLifecycleManager
from connectors.vault import CredentialVault

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProvider(BaseConnector):
    """
    Scripted provider.  ``refresh_results`` is consumed one item per call:
    a ``TokenGrant`` is returned, an exception is raised.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.refresh_results: List = []
        self.refresh_calls: List[str] = []
        self.revoked: List[str] = []
        self.revoke_error: Optional[Exception] = None
        self.revoke_delay = 0.0

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def scopes(self) -> List[str]:
        return ["meeting:read"]

    def get_auth_url(self, state: str) -> str:
        return f"https://provider.example/authorize?state={state}"

    async def handle_callback(self, code, redirect_uri=None) -> TokenGrant:
        if code == "bad-code":
            raise ProviderRejected("invalid_grant", 400)
        return TokenGrant(access_token=f"access-{code}", refresh_token=f"refresh-{code}")

    async def fetch_identity(self, access_token: str) -> ExternalIdentity:
        return ExternalIdentity(identity_id="user-1", email="user@example.com")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.refresh_results.pop(0) if self.refresh_results else TokenGrant(
            access_token=f"access-{len(self.refresh_calls)}", expires_in=3600
        )
        if isinstance(result, BaseException):
            raise result
        return result

    async def revoke_token(self, access_token: str) -> bool:
        if self.revoke_delay:
            await asyncio.sleep(self.revoke_delay)
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append(access_token)
        return True


def make_credential(owner_id: str, clock: FakeClock, expires_in: float, **overrides) -> CredentialSet:
    fields = dict(
        owner_id=owner_id,
        access_token=f"access-{owner_id}",
        refresh_token=f"refresh-{owner_id}",
        expires_at=clock() + timedelta(seconds=expires_in),
        scopes=frozenset({"meeting:read", "user:read"}),
        stored_at=clock(),
        updated_at=clock(),
    )
    fields.update(overrides)
    return CredentialSet(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credential_factory(clock):
    def _make(owner_id: str, expires_in: float, **overrides) -> CredentialSet:
        return make_credential(owner_id, clock, expires_in, **overrides)

    return _make


@pytest.fixture
def cipher():
    return TokenCipher(bytes.fromhex(TEST_KEY_HEX))


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def vault(store, cipher):
    return CredentialVault(store, cipher)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def manager(vault, provider, clock):
    return TokenLifecycleManager(
        vault,
        provider,
        refresh_window=timedelta(minutes=5),
        refresh_timeout=1.0,
        grace_period=timedelta(hours=1),
        clock=clock,
    )
