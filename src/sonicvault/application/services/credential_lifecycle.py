"""Credential lifecycle: hand out a usable Spotify access token per user.

Hey future me - this is the ONLY place that decides whether a stored token is still good and
that talks to the token endpoint for refreshes. The rules:

1. No stored credential -> NoCredentialError (the user has to log in again)
2. Token valid for more than 5 more minutes -> return it, no network call (fast path)
3. Otherwise refresh with the stored refresh token and write the result back in ONE
   conditional UPDATE. The refresh token column is only touched when Spotify rotated it.
4. Refresh failed -> RefreshFailedError and NOTHING is written. The old credential stays
   exactly as it was so the next call can simply try again.

Within one process, concurrent callers for the same user share a single refresh: the first
one takes the per-user lock and refreshes, the others wait on the lock and then re-read the
(now fresh) credential. Across worker processes the last write wins.

The manager lives for the whole app lifetime (app.state) and opens its OWN short transaction
for each credential write. That way a rotated refresh token is committed even when the request
that triggered the refresh fails afterwards.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime

import httpx

from sonicvault.domain.entities import TokenGrant, UserCredential, utc_now
from sonicvault.domain.exceptions import (
    NoCredentialError,
    RefreshFailedError,
    TokenExchangeError,
)
from sonicvault.domain.ports import ICredentialStore, ITokenExchanger

logger = logging.getLogger(__name__)

CredentialStoreScope = Callable[[], AbstractAsyncContextManager[ICredentialStore]]


class CredentialLifecycleManager:
    """Keeps per-user access credentials usable across their expiry window."""

    def __init__(
        self,
        store_scope: CredentialStoreScope,
        exchanger: ITokenExchanger,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            store_scope: Factory for a transactional credential store scope
                (commits on clean exit, rolls back on error)
            exchanger: Authorization server client used for refreshes
            clock: Current-time source (tests pass a fixed clock)
        """
        self._store_scope = store_scope
        self._exchanger = exchanger
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    # Hey future me - locks only exist while someone holds or waits for them. The last one out
    # drops the entry, so the dict stays as small as the number of refreshes in flight.
    # No await between the counter update and the dict edit, so the loop can't interleave here.
    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                del self._locks[user_id]

    async def get_usable_credential(self, user_id: str) -> str:
        """Return an access token that is valid for at least the safety margin.

        Raises:
            NoCredentialError: No credential stored (or nothing to refresh with)
            RefreshFailedError: Stale credential could not be renewed (transient)
        """
        async with self._store_scope() as store:
            credential = await store.get(user_id)

        if credential is None:
            raise NoCredentialError(user_id)
        if not credential.is_stale(self._clock()):
            return credential.access_token  # type: ignore[return-value]

        async with self._user_lock(user_id):
            return await self._refresh_locked(user_id)

    async def _refresh_locked(self, user_id: str) -> str:
        async with self._store_scope() as store:
            # Re-read: whoever held the lock before us may already have refreshed
            credential = await store.get(user_id)
            if credential is None:
                raise NoCredentialError(user_id)
            if not credential.is_stale(self._clock()):
                logger.debug("Credential for user %s refreshed concurrently", user_id)
                return credential.access_token  # type: ignore[return-value]
            if not credential.refresh_token:
                raise NoCredentialError(
                    user_id, f"Credential for user {user_id} has no refresh token"
                )

            grant = await self._exchange(credential)

            updated = await store.update_after_refresh(
                user_id,
                access_token=grant.access_token,
                expires_at=grant.expires_at(self._clock()),
                refresh_token=grant.refresh_token,
            )
            if not updated:
                # Profile row vanished between read and write
                raise NoCredentialError(user_id)

        logger.info(
            "Refreshed credential for user %s (rotated=%s, expires_in=%ds)",
            user_id,
            bool(grant.refresh_token),
            grant.expires_in,
        )
        return grant.access_token

    async def _exchange(self, credential: UserCredential) -> TokenGrant:
        try:
            return await self._exchanger.refresh(credential.refresh_token or "")
        except TokenExchangeError as e:
            logger.warning(
                "Token refresh rejected for user %s: %s (error=%s, status=%s)",
                credential.user_id,
                e.message,
                e.error_code,
                e.http_status,
            )
            raise RefreshFailedError(
                credential.user_id,
                error_code=e.error_code,
                http_status=e.http_status,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(
                "Token refresh for user %s failed on transport: %s",
                credential.user_id,
                e,
            )
            raise RefreshFailedError(credential.user_id) from e
