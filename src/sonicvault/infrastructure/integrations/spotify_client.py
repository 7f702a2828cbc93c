"""Spotify HTTP client: OAuth token endpoint plus read-only catalog calls."""

import base64
import logging
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from sonicvault.config import SpotifySettings
from sonicvault.domain.entities import CatalogTrack, TokenGrant
from sonicvault.domain.exceptions import ConfigurationError, TokenExchangeError
from sonicvault.domain.ports import ICatalogClient, ITokenExchanger
from sonicvault.infrastructure.integrations.http_pool import HttpClientPool

logger = logging.getLogger(__name__)


class SpotifyClient(ICatalogClient, ITokenExchanger):
    """HTTP client for Spotify accounts and Web API."""

    # Spotify's /tracks endpoint accepts at most 50 IDs per call
    MAX_TRACKS_PER_REQUEST = 50

    def __init__(
        self, settings: SpotifySettings, client: httpx.AsyncClient | None = None
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            client: Optional httpx client (defaults to the shared pool)
        """
        self.settings = settings
        self._client = client

    @property
    def token_url(self) -> str:
        return f"{self.settings.accounts_base_url}/api/token"

    @property
    def authorize_url(self) -> str:
        return f"{self.settings.accounts_base_url}/authorize"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = await HttpClientPool.get_client()
        return self._client

    def _basic_auth_header(self) -> str:
        if not self.settings.client_id or not self.settings.client_secret:
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET are not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        raw = f"{self.settings.client_id}:{self.settings.client_secret}"
        return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def get_authorization_url(self, state: str) -> str:
        """
        Build the Spotify authorize URL (authorization code flow).

        Args:
            state: State parameter for CSRF protection

        Returns:
            Authorization URL

        Raises:
            ConfigurationError: If client_id or redirect_uri is not configured
        """
        if not self.settings.client_id.strip():
            raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
        if not self.settings.redirect_uri.strip():
            raise ConfigurationError("SPOTIFY_REDIRECT_URI is not configured")

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": self.settings.redirect_uri,
            "state": state,
            "scope": self.settings.scopes,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    # Hey future me - both grants go through here. It's form-encoded with HTTP Basic client
    # auth (confidential client). Spotify says "invalid_grant" on a 400 when the refresh token
    # was revoked; anything non-2xx becomes TokenExchangeError with the OAuth error code so the
    # caller can log it. Transport errors (httpx.HTTPError) are left to propagate.
    async def _token_request(self, data: dict[str, str]) -> TokenGrant:
        client = await self._get_client()
        response = await client.post(
            self.token_url,
            data=data,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "Authorization": self._basic_auth_header(),
            },
            timeout=self.settings.timeout,
        )

        if response.status_code != 200:
            error_code: str | None = None
            description = response.text[:200]
            try:
                payload = response.json()
                error_code = payload.get("error")
                description = payload.get("error_description", description)
            except ValueError:
                pass
            raise TokenExchangeError(
                f"Token endpoint returned {response.status_code}: {description}",
                error_code=error_code,
                http_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                "Token endpoint returned invalid JSON", http_status=200
            ) from e

        if not payload.get("access_token"):
            raise TokenExchangeError(
                "Token endpoint response has no access_token", http_status=200
            )

        return TokenGrant(
            access_token=payload["access_token"],
            expires_in=int(payload.get("expires_in", 3600)),
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope"),
        )

    async def exchange_code(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code for tokens.

        Raises:
            TokenExchangeError: If Spotify rejects the code
            httpx.HTTPError: On transport errors
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """
        Refresh an access token.

        The returned grant's refresh_token is None unless Spotify rotated it.

        Raises:
            TokenExchangeError: If Spotify rejects the refresh token
            httpx.HTTPError: On transport errors
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _api_get(
        self, path: str, access_token: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.get(
            f"{self.settings.api_base_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.settings.timeout,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """Get the profile of the token's owner (/me)."""
        return await self._api_get("/me", access_token)

    async def get_track(self, track_id: str, access_token: str) -> CatalogTrack:
        """
        Get track details.

        Raises:
            httpx.HTTPError: If the request fails (404 for removed tracks)
        """
        data = await self._api_get(f"/tracks/{track_id}", access_token)
        return CatalogTrack.from_spotify(data)

    # Yo - invalid or removed IDs come back as null entries in "tracks"; they are dropped here.
    async def get_tracks(
        self, track_ids: list[str], access_token: str
    ) -> list[CatalogTrack]:
        """Get several tracks, batching by 50."""
        tracks: list[CatalogTrack] = []
        for start in range(0, len(track_ids), self.MAX_TRACKS_PER_REQUEST):
            batch = track_ids[start : start + self.MAX_TRACKS_PER_REQUEST]
            data = await self._api_get(
                "/tracks", access_token, params={"ids": ",".join(batch)}
            )
            tracks.extend(
                CatalogTrack.from_spotify(item)
                for item in data.get("tracks", [])
                if item
            )
        return tracks
