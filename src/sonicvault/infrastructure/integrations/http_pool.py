"""Shared HTTP client pool for connection reuse across integrations.

Hey future me - Spotify, the conversion provider and the audio transfer all go through ONE
httpx.AsyncClient. That gives keep-alive reuse and a single cleanup point at shutdown
(lifespan calls HttpClientPool.close()).

Usage:
    client = await HttpClientPool.get_client()
    response = await client.get("https://api.example.com/data")
"""

import asyncio
import logging
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)


class HttpClientPool:
    """Process-wide shared httpx.AsyncClient."""

    _client: ClassVar[httpx.AsyncClient | None] = None
    _lock: ClassVar[asyncio.Lock | None] = None

    DEFAULT_TIMEOUT: ClassVar[float] = 30.0
    DEFAULT_MAX_KEEPALIVE: ClassVar[int] = 20
    DEFAULT_MAX_CONNECTIONS: ClassVar[int] = 50

    # The lock is created lazily so it binds to the running event loop, not import time.
    @classmethod
    def _ensure_lock(cls) -> asyncio.Lock:
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(
        cls,
        timeout: float | None = None,
        max_keepalive: int | None = None,
        max_connections: int | None = None,
    ) -> httpx.AsyncClient:
        """Get the shared client, creating it on first call.

        Config params only apply on the FIRST call; later calls return the same instance.
        Per-request timeouts can still be passed to individual requests.
        """
        async with cls._ensure_lock():
            if cls._client is None:
                effective_timeout = timeout or cls.DEFAULT_TIMEOUT
                effective_keepalive = max_keepalive or cls.DEFAULT_MAX_KEEPALIVE
                effective_max_conn = max_connections or cls.DEFAULT_MAX_CONNECTIONS

                cls._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(effective_timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=effective_keepalive,
                        max_connections=effective_max_conn,
                    ),
                    http2=True,
                    # Conversion download links are usually CDN redirects
                    follow_redirects=True,
                )
                logger.info(
                    "HTTP client pool initialized (timeout=%.1fs, keepalive=%d, max_conn=%d)",
                    effective_timeout,
                    effective_keepalive,
                    effective_max_conn,
                )
            return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client; the next get_client() creates a fresh one."""
        async with cls._ensure_lock():
            if cls._client is not None:
                await cls._client.aclose()
                cls._client = None
                logger.info("HTTP client pool closed")

    @classmethod
    def is_initialized(cls) -> bool:
        """Check if the client pool has been initialized."""
        return cls._client is not None
