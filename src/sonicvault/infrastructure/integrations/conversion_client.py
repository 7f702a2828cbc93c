"""Conversion provider client (RapidAPI "spotify-downloader").

Hey future me - the provider takes an open.spotify.com track URL and answers with
{success, data: {title, artist, album, cover, downloadLink}}. The downloadLink is a short-lived
CDN URL, so fetch_audio() has to run right after convert(). There is NO retry in here:
the caller re-runs the whole acquisition if it wants another go.
"""

import logging
from typing import Any

import httpx

from sonicvault.config import ConversionSettings
from sonicvault.domain.entities import ConversionResult
from sonicvault.domain.exceptions import (
    ConfigurationError,
    ProviderNoResultError,
    ProviderUnavailableError,
    TransferFailedError,
)
from sonicvault.domain.ports import IConversionProvider
from sonicvault.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)


class ConversionProviderClient(IConversionProvider):
    """HTTP client for the conversion provider and its download links."""

    def __init__(
        self, settings: ConversionSettings, client: httpx.AsyncClient | None = None
    ) -> None:
        self.settings = settings
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = await HttpClientPool.get_client()
        return self._client

    def _headers(self) -> dict[str, str]:
        if not self.settings.api_key:
            raise ConfigurationError("CONVERSION_API_KEY is not configured")
        return {
            "X-RapidAPI-Key": self.settings.api_key,
            "x-rapidapi-host": self.settings.host,
        }

    async def convert(self, reference_url: str) -> ConversionResult:
        """Ask the provider for a downloadable rendition of reference_url."""
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.settings.base_url}/downloadSong",
                params={"songId": reference_url},
                headers=self._headers(),
                timeout=self.settings.timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(
                f"Conversion provider unreachable: {e}"
            ) from e

        if not response.is_success:
            raise ProviderUnavailableError(
                f"Conversion provider returned {response.status_code}",
                http_status=response.status_code,
            )

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                "Conversion provider returned invalid JSON",
                http_status=response.status_code,
            ) from e

        data = payload.get("data") or {}
        download_link = data.get("downloadLink")
        if not payload.get("success") or not download_link:
            raise ProviderNoResultError(
                "Conversion provider has no downloadable result for this track"
            )

        return ConversionResult(
            title=data.get("title") or "Unknown",
            artist=data.get("artist") or "Unknown",
            download_link=download_link,
            album=data.get("album"),
            cover_url=data.get("cover"),
        )

    # Listen up - the whole payload is buffered in memory. Fine for song-length MP3s; a huge
    # or stalled upstream file is bounded only by the timeout.
    async def fetch_audio(self, download_link: str) -> bytes:
        """Fetch the whole audio payload."""
        client = await self._get_client()
        try:
            response = await client.get(download_link, timeout=self.settings.timeout)
        except httpx.HTTPError as e:
            raise TransferFailedError(f"Audio download failed: {e}") from e

        if not response.is_success:
            raise TransferFailedError(
                f"Audio download returned {response.status_code}",
                http_status=response.status_code,
            )
        return response.content
