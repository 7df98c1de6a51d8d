"""
Tests for TokenLifecycleManager: refresh policy, single-flight, failure
classification, revocation and cleanup.
"""

import asyncio
from datetime import timedelta

import pytest

from connectors.base import ProviderRejected, ProviderTransientError, TokenGrant
from connectors.token_manager import RefreshStatus, TokenLifecycleManager


class TestGetValidAccessToken:
    @pytest.mark.asyncio
    async def test_missing_credential(self, manager, provider):
        assert await manager.get_valid_access_token("nobody") is None
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_no_premature_refresh(self, manager, vault, provider, credential_factory):
        # exactly at the window boundary is still fresh
        await vault.put(credential_factory("alice", 300))

        assert await manager.get_valid_access_token("alice") == "access-alice"
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_refresh_inside_window(self, manager, vault, provider, clock, credential_factory):
        await vault.put(credential_factory("alice", 299))
        provider.refresh_results = [
            TokenGrant(access_token="new-access", refresh_token="new-refresh", expires_in=3600)
        ]

        assert await manager.get_valid_access_token("alice") == "new-access"
        assert provider.refresh_calls == ["refresh-alice"]

        stored = await vault.get("alice")
        assert stored.refresh_token == "new-refresh"
        assert stored.expires_at == clock() + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_permanent_failure_deletes_credential(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 60))
        provider.refresh_results = [ProviderRejected("invalid_grant", 400)]

        assert await manager.get_valid_access_token("alice") is None
        assert await vault.get("alice") is None
        assert await manager.get_valid_access_token("alice") is None
        assert len(provider.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_credential(self, manager, vault, provider, credential_factory):
        original = credential_factory("alice", 120)
        await vault.put(original)
        provider.refresh_results = [
            ProviderTransientError("service unavailable", 503),
            ProviderTransientError("service unavailable", 503),
        ]

        assert await manager.get_valid_access_token("alice") == "access-alice"
        assert await vault.get("alice") == original

        # still inside the window, so the next call tries again
        assert await manager.get_valid_access_token("alice") == "access-alice"
        assert len(provider.refresh_calls) == 2

    @pytest.mark.asyncio
    async def test_transient_failure_on_expired_token(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", -10))
        provider.refresh_results = [ProviderTransientError("bad gateway", 502)]

        assert await manager.get_valid_access_token("alice") is None
        assert await vault.get("alice") is not None


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_provider_call(self, vault, provider, clock, credential_factory):
        provider.delay = 0.05
        manager = TokenLifecycleManager(
            vault,
            provider,
            refresh_window=timedelta(minutes=5),
            refresh_timeout=1.0,
            clock=clock,
        )
        await vault.put(credential_factory("alice", 30))
        provider.refresh_results = [TokenGrant(access_token="shared", expires_in=3600)]

        results = await asyncio.gather(*(manager.get_valid_access_token("alice") for _ in range(10)))

        assert results == ["shared"] * 10
        assert len(provider.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_explicit_refreshes(self, manager, vault, provider, credential_factory):
        provider.delay = 0.05
        await vault.put(credential_factory("alice", 3600))

        statuses = await asyncio.gather(*(manager.refresh("alice") for _ in range(5)))

        assert statuses == [RefreshStatus.OK] * 5
        assert len(provider.refresh_calls) == 1

    @pytest.mark.asyncio
    async def test_different_identities_refresh_independently(self, manager, vault, provider, credential_factory):
        provider.delay = 0.01
        await vault.put(credential_factory("alice", 10))
        await vault.put(credential_factory("bob", 10))

        await asyncio.gather(
            manager.get_valid_access_token("alice"),
            manager.get_valid_access_token("bob"),
        )
        assert sorted(provider.refresh_calls) == ["refresh-alice", "refresh-bob"]

    @pytest.mark.asyncio
    async def test_sequential_refreshes_each_call_provider(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 3600))

        assert await manager.refresh("alice") is RefreshStatus.OK
        assert await manager.refresh("alice") is RefreshStatus.OK
        assert len(provider.refresh_calls) == 2


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_token_carried_forward(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 10))
        provider.refresh_results = [TokenGrant(access_token="new-access", expires_in=600)]

        assert await manager.refresh("alice") is RefreshStatus.OK
        stored = await vault.get("alice")
        assert stored.access_token == "new-access"
        assert stored.refresh_token == "refresh-alice"
        assert stored.scopes == frozenset({"meeting:read", "user:read"})

    @pytest.mark.asyncio
    async def test_stored_at_preserved_updated_at_bumped(self, manager, vault, clock, credential_factory):
        original = credential_factory("alice", 10)
        await vault.put(original)
        clock.advance(5)

        await manager.refresh("alice")
        stored = await vault.get("alice")
        assert stored.stored_at == original.stored_at
        assert stored.updated_at == clock()

    @pytest.mark.asyncio
    async def test_missing_credential(self, manager, provider):
        assert await manager.refresh("nobody") is RefreshStatus.MISSING
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_without_refresh_token(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 10, refresh_token=""))

        assert await manager.refresh("alice") is RefreshStatus.MISSING
        assert provider.refresh_calls == []
        assert await vault.get("alice") is None

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, vault, provider, clock, credential_factory):
        provider.delay = 0.5
        manager = TokenLifecycleManager(vault, provider, refresh_timeout=0.05, clock=clock)
        original = credential_factory("alice", 10)
        await vault.put(original)

        assert await manager.refresh("alice") is RefreshStatus.TRANSIENT
        assert await vault.get("alice") == original

    @pytest.mark.asyncio
    async def test_unexpected_error_is_transient(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 10))
        provider.refresh_results = [RuntimeError("boom")]

        assert await manager.refresh("alice") is RefreshStatus.TRANSIENT
        assert await vault.get("alice") is not None


class TestStoreCredentials:
    @pytest.mark.asyncio
    async def test_store_from_grant(self, manager, vault, clock):
        grant = TokenGrant(access_token="a", refresh_token="r", expires_in=120, scopes=["user:read"])

        credential = await manager.store_credentials("alice", grant)

        assert credential.expires_at == clock() + timedelta(seconds=120)
        assert await vault.get("alice") == credential

    @pytest.mark.asyncio
    async def test_store_replaces_existing(self, manager, vault):
        await manager.store_credentials("alice", TokenGrant(access_token="one"))
        await manager.store_credentials("alice", TokenGrant(access_token="two"))

        assert (await vault.get("alice")).access_token == "two"
        assert len(await vault.list()) == 1


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_is_terminal(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 3600))

        assert await manager.revoke("alice") is True
        assert provider.revoked == ["access-alice"]
        assert await vault.get("alice") is None

    @pytest.mark.asyncio
    async def test_revoke_absent_is_noop(self, manager, provider):
        assert await manager.revoke("nobody") is False
        assert provider.revoked == []

    @pytest.mark.asyncio
    async def test_provider_failure_does_not_block_deletion(self, manager, vault, provider, credential_factory):
        await vault.put(credential_factory("alice", 3600))
        provider.revoke_error = ProviderTransientError("upstream down", 503)

        assert await manager.revoke("alice") is True
        assert await vault.get("alice") is None

    @pytest.mark.asyncio
    async def test_revoke_during_refresh_stays_revoked(self, manager, vault, provider, credential_factory):
        provider.delay = 0.05
        await vault.put(credential_factory("alice", 60))

        pending = asyncio.create_task(manager.get_valid_access_token("alice"))
        await asyncio.sleep(0.01)
        assert await manager.revoke("alice") is True
        await pending

        assert await vault.get("alice") is None
        assert provider.refresh_calls == ["refresh-alice"]
        # the token minted by the refresh is the one revoked upstream
        assert provider.revoked == ["access-1"]


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_is_selective(self, manager, vault, store, credential_factory):
        await vault.put(credential_factory("long-gone", -3601))
        await vault.put(credential_factory("in-grace", -3599))
        await vault.put(credential_factory("live", 600))
        before = {owner: record for owner, record in await store.list()}

        assert await manager.cleanup() == 1

        after = {owner: record for owner, record in await store.list()}
        assert set(after) == {"in-grace", "live"}
        for owner in after:
            assert after[owner] == before[owner]

    @pytest.mark.asyncio
    async def test_refresh_does_not_resurrect_reaped_credential(self, manager, vault, provider, credential_factory):
        provider.delay = 0.05
        await vault.put(credential_factory("alice", -7200))

        pending = asyncio.create_task(manager.get_valid_access_token("alice"))
        await asyncio.sleep(0.01)
        assert await manager.cleanup() == 1

        assert await pending is None
        assert len(provider.refresh_calls) == 1
        assert await vault.get("alice") is None

    @pytest.mark.asyncio
    async def test_token_stats(self, manager, vault, credential_factory):
        await vault.put(credential_factory("expired", -1))
        await vault.put(credential_factory("live", 600))

        stats = await manager.get_token_stats()
        assert (stats.total, stats.valid, stats.expired) == (2, 1, 1)
        assert stats.storage_type == "memory"
