"""Tests for CredentialLifecycleManager."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from sonicvault.application.services.credential_lifecycle import CredentialLifecycleManager
from sonicvault.domain.entities import TokenGrant, UserCredential, UserProfile
from sonicvault.domain.exceptions import (
    NoCredentialError,
    RefreshFailedError,
    TokenExchangeError,
)
from sonicvault.domain.ports import ICredentialStore, ITokenExchanger

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class InMemoryCredentialStore(ICredentialStore):
    """Credential store keeping one credential per user in a dict."""

    def __init__(self, *credentials: UserCredential) -> None:
        self.credentials = {c.user_id: c for c in credentials}
        self.writes: list[dict] = []

    async def get(self, user_id: str) -> UserCredential | None:
        credential = self.credentials.get(user_id)
        return replace(credential) if credential else None

    async def update_after_refresh(
        self,
        user_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> bool:
        current = self.credentials.get(user_id)
        if current is None:
            return False
        self.writes.append(
            {"access_token": access_token, "expires_at": expires_at, "refresh_token": refresh_token}
        )
        self.credentials[user_id] = UserCredential(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token or current.refresh_token,
            expires_at=expires_at,
        )
        return True

    async def upsert_authorized(self, profile: UserProfile, grant: TokenGrant) -> str:
        raise NotImplementedError


def _credential(expires_in: timedelta | None, access: str = "old-access") -> UserCredential:
    return UserCredential(
        user_id="u1",
        access_token=access,
        refresh_token="old-refresh",
        expires_at=NOW + expires_in if expires_in is not None else None,
    )


@pytest.fixture
def exchanger() -> AsyncMock:
    mock = AsyncMock(spec=ITokenExchanger)
    mock.refresh.return_value = TokenGrant(access_token="new-access", expires_in=3600)
    return mock


def _manager(store: InMemoryCredentialStore, exchanger: AsyncMock) -> CredentialLifecycleManager:
    @asynccontextmanager
    async def scope() -> AsyncIterator[ICredentialStore]:
        yield store

    return CredentialLifecycleManager(store_scope=scope, exchanger=exchanger, clock=lambda: NOW)


class TestFastPath:
    """Tests for credentials that are still usable."""

    async def test_fresh_credential_returned_without_network(self, exchanger: AsyncMock) -> None:
        store = InMemoryCredentialStore(_credential(timedelta(hours=1)))

        token = await _manager(store, exchanger).get_usable_credential("u1")

        assert token == "old-access"
        exchanger.refresh.assert_not_called()
        assert store.writes == []

    async def test_unknown_user_raises_no_credential(self, exchanger: AsyncMock) -> None:
        store = InMemoryCredentialStore()

        with pytest.raises(NoCredentialError) as exc_info:
            await _manager(store, exchanger).get_usable_credential("ghost")

        assert exc_info.value.user_id == "ghost"
        exchanger.refresh.assert_not_called()


class TestRefresh:
    """Tests for stale credentials."""

    async def test_stale_credential_is_refreshed(self, exchanger: AsyncMock) -> None:
        store = InMemoryCredentialStore(_credential(timedelta(minutes=2)))

        token = await _manager(store, exchanger).get_usable_credential("u1")

        assert token == "new-access"
        exchanger.refresh.assert_awaited_once_with("old-refresh")
        stored = store.credentials["u1"]
        assert stored.access_token == "new-access"
        assert stored.expires_at == NOW + timedelta(hours=1)
        # Returned credential is good for at least the safety margin
        assert not stored.is_stale(NOW)

    async def test_unknown_expiry_forces_refresh(self, exchanger: AsyncMock) -> None:
        store = InMemoryCredentialStore(_credential(None))

        assert await _manager(store, exchanger).get_usable_credential("u1") == "new-access"
        exchanger.refresh.assert_awaited_once()

    async def test_unrotated_refresh_token_is_kept(self, exchanger: AsyncMock) -> None:
        store = InMemoryCredentialStore(_credential(timedelta(0)))

        await _manager(store, exchanger).get_usable_credential("u1")

        assert store.writes[0]["refresh_token"] is None
        assert store.credentials["u1"].refresh_token == "old-refresh"

    async def test_rotated_refresh_token_is_persisted(self, exchanger: AsyncMock) -> None:
        exchanger.refresh.return_value = TokenGrant(
            access_token="new-access", expires_in=3600, refresh_token="new-refresh"
        )
        store = InMemoryCredentialStore(_credential(timedelta(0)))

        await _manager(store, exchanger).get_usable_credential("u1")

        assert store.credentials["u1"].refresh_token == "new-refresh"

    async def test_missing_refresh_token_requires_reauthorization(
        self, exchanger: AsyncMock
    ) -> None:
        credential = replace(_credential(timedelta(0)), refresh_token=None)
        store = InMemoryCredentialStore(credential)

        with pytest.raises(NoCredentialError):
            await _manager(store, exchanger).get_usable_credential("u1")

        exchanger.refresh.assert_not_called()


class TestRefreshFailure:
    """A failed refresh must leave the stored credential untouched."""

    async def test_rejected_refresh_raises_refresh_failed(self, exchanger: AsyncMock) -> None:
        exchanger.refresh.side_effect = TokenExchangeError(
            "invalid_grant", error_code="invalid_grant", http_status=400
        )
        original = _credential(timedelta(minutes=1))
        store = InMemoryCredentialStore(original)

        with pytest.raises(RefreshFailedError) as exc_info:
            await _manager(store, exchanger).get_usable_credential("u1")

        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.http_status == 400
        assert store.credentials["u1"] == original
        assert store.writes == []

    async def test_transport_error_raises_refresh_failed(self, exchanger: AsyncMock) -> None:
        exchanger.refresh.side_effect = httpx.ConnectError("connection refused")
        original = _credential(timedelta(minutes=1))
        store = InMemoryCredentialStore(original)

        with pytest.raises(RefreshFailedError):
            await _manager(store, exchanger).get_usable_credential("u1")

        assert store.credentials["u1"] == original

    async def test_next_call_retries_after_failure(self, exchanger: AsyncMock) -> None:
        exchanger.refresh.side_effect = [
            httpx.ReadTimeout("slow"),
            TokenGrant(access_token="new-access", expires_in=3600),
        ]
        store = InMemoryCredentialStore(_credential(timedelta(minutes=1)))
        manager = _manager(store, exchanger)

        with pytest.raises(RefreshFailedError):
            await manager.get_usable_credential("u1")
        assert await manager.get_usable_credential("u1") == "new-access"


class TestSingleFlight:
    """Concurrent callers for one user share a single refresh."""

    async def test_concurrent_stale_calls_refresh_once(self, exchanger: AsyncMock) -> None:
        async def slow_refresh(refresh_token: str) -> TokenGrant:
            await asyncio.sleep(0.01)
            return TokenGrant(access_token="new-access", expires_in=3600, refresh_token="rot")

        exchanger.refresh.side_effect = slow_refresh
        store = InMemoryCredentialStore(_credential(timedelta(minutes=1)))
        manager = _manager(store, exchanger)

        tokens = await asyncio.gather(*(manager.get_usable_credential("u1") for _ in range(5)))

        assert tokens == ["new-access"] * 5
        assert exchanger.refresh.await_count == 1
        assert len(store.writes) == 1

    async def test_different_users_do_not_block_each_other(self, exchanger: AsyncMock) -> None:
        other = replace(_credential(timedelta(minutes=1)), user_id="u2")
        store = InMemoryCredentialStore(_credential(timedelta(minutes=1)), other)
        manager = _manager(store, exchanger)

        await asyncio.gather(
            manager.get_usable_credential("u1"), manager.get_usable_credential("u2")
        )

        assert exchanger.refresh.await_count == 2

    async def test_per_user_locks_are_released_after_refresh(self, exchanger: AsyncMock) -> None:
        async def slow_refresh(refresh_token: str) -> TokenGrant:
            await asyncio.sleep(0.01)
            return TokenGrant(access_token="new-access", expires_in=3600)

        exchanger.refresh.side_effect = slow_refresh
        other = replace(_credential(timedelta(minutes=1)), user_id="u2")
        store = InMemoryCredentialStore(_credential(timedelta(minutes=1)), other)
        manager = _manager(store, exchanger)

        pending = [
            asyncio.create_task(manager.get_usable_credential(user))
            for user in ("u1", "u1", "u2")
        ]
        await asyncio.sleep(0)
        # While refreshes are in flight there is one lock per user
        assert set(manager._locks) == {"u1", "u2"}
        await asyncio.gather(*pending)

        assert manager._locks == {}
        assert manager._lock_holders == {}

    async def test_lock_is_released_when_refresh_fails(self, exchanger: AsyncMock) -> None:
        exchanger.refresh.side_effect = httpx.ConnectError("connection refused")
        store = InMemoryCredentialStore(_credential(timedelta(minutes=1)))
        manager = _manager(store, exchanger)

        with pytest.raises(RefreshFailedError):
            await manager.get_usable_credential("u1")

        assert manager._locks == {}
