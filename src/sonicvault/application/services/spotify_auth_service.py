"""Spotify OAuth Authentication Service.

Hey future me - this wraps the authorization code flow so the auth router stays thin:

1. generate_auth_url() -> URL + state (the router keeps the state in a short-lived cookie)
2. User visits URL, grants access, Spotify redirects to /api/auth/callback?code=...
3. complete_authorization() -> exchange code, fetch /me, upsert profile + tokens

Token refreshes do NOT live here; they belong to CredentialLifecycleManager.
"""

import logging
import secrets
from dataclasses import dataclass

import httpx

from sonicvault.domain.entities import UserProfile
from sonicvault.domain.exceptions import AuthenticationError, TokenExchangeError
from sonicvault.domain.ports import ICredentialStore
from sonicvault.infrastructure.integrations.spotify_client import SpotifyClient

logger = logging.getLogger(__name__)


@dataclass
class AuthUrlResult:
    """Result of auth URL generation."""

    authorization_url: str
    state: str


@dataclass
class AuthorizationResult:
    """Outcome of a completed OAuth callback."""

    user_id: str
    profile: UserProfile


class SpotifyAuthService:
    """Service for Spotify OAuth authentication."""

    def __init__(self, client: SpotifyClient) -> None:
        """Initialize auth service.

        Args:
            client: Spotify client (accounts + Web API)
        """
        self._client = client

    def generate_auth_url(self, state: str | None = None) -> AuthUrlResult:
        """Generate the OAuth authorization URL.

        Args:
            state: Optional CSRF state (generated if None)

        Raises:
            ConfigurationError: If Spotify credentials are missing
        """
        if state is None:
            state = secrets.token_urlsafe(32)

        authorization_url = self._client.get_authorization_url(state)
        logger.debug("Generated auth URL with state=%s...", state[:8])
        return AuthUrlResult(authorization_url=authorization_url, state=state)

    # Hey future me - the profile upsert and the token write happen in the caller's session,
    # so the router's session_scope() commits both together. A second login of the same
    # Spotify account updates the existing row instead of creating a new user.
    async def complete_authorization(
        self, code: str, credential_store: ICredentialStore
    ) -> AuthorizationResult:
        """Exchange the callback code and store profile plus tokens.

        Raises:
            AuthenticationError: Code rejected or profile lookup failed
        """
        try:
            grant = await self._client.exchange_code(code)
        except TokenExchangeError as e:
            logger.warning(
                "Authorization code exchange rejected: %s (error=%s)",
                e.message,
                e.error_code,
            )
            raise AuthenticationError("Spotify rejected the authorization code") from e
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Could not reach Spotify: {e}") from e

        try:
            me = await self._client.get_current_user(grant.access_token)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Could not load Spotify profile: {e}") from e

        profile = UserProfile.from_spotify(me)
        user_id = await credential_store.upsert_authorized(profile, grant)
        profile.id = user_id

        logger.info(
            "Authorized Spotify user %s as %s", profile.spotify_user_id, user_id
        )
        return AuthorizationResult(user_id=user_id, profile=profile)
