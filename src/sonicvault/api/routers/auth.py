"""Authentication endpoints (Spotify OAuth authorization code flow)."""

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from sonicvault.api.dependencies import (
    get_app_settings,
    get_auth_service,
    get_credential_manager,
    get_credential_repository,
    get_player_registry,
    get_session_user_id,
)
from sonicvault.api.session import (
    clear_session_cookie,
    create_session_token,
    set_session_cookie,
)
from sonicvault.application.player import PlayerSessionRegistry
from sonicvault.application.services import (
    CredentialLifecycleManager,
    SpotifyAuthService,
)
from sonicvault.config import Settings
from sonicvault.domain.exceptions import AuthenticationError
from sonicvault.infrastructure.persistence import CredentialRepository

logger = logging.getLogger(__name__)

router = APIRouter()

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 600


# Hey future me - the CSRF state rides along in a short-lived httpOnly cookie. The callback
# compares it with the ?state= Spotify hands back; mismatch means someone else started this
# flow, so we refuse.
@router.get("/login")
async def login(
    auth_service: SpotifyAuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    """Redirect the browser to Spotify's authorize page."""
    result = auth_service.generate_auth_url(secrets.token_urlsafe(32))
    response = RedirectResponse(result.authorization_url, status_code=307)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        result.state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        secure=settings.auth.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    auth_service: SpotifyAuthService = Depends(get_auth_service),
    credential_store: CredentialRepository = Depends(get_credential_repository),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    """Finish the OAuth flow: store profile + tokens, set the session cookie."""
    if error:
        raise AuthenticationError(f"Spotify authorization failed: {error}")
    if not code:
        raise AuthenticationError("No authorization code provided")

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not expected_state or not state or not secrets.compare_digest(expected_state, state):
        raise AuthenticationError("Invalid OAuth state")

    result = await auth_service.complete_authorization(code, credential_store)

    response = RedirectResponse(settings.auth.post_login_redirect, status_code=303)
    set_session_cookie(
        response, create_session_token(result.user_id, settings.auth), settings.auth
    )
    response.delete_cookie(OAUTH_STATE_COOKIE)
    return response


@router.get("/token")
async def token(
    user_id: str = Depends(get_session_user_id),
    credentials: CredentialLifecycleManager = Depends(get_credential_manager),
) -> dict[str, Any]:
    """Usable Spotify access token for the session user (refreshed when needed)."""
    access_token = await credentials.get_usable_credential(user_id)
    return {"access_token": access_token}


@router.post("/logout")
async def logout(
    user_id: str = Depends(get_session_user_id),
    registry: PlayerSessionRegistry = Depends(get_player_registry),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    """Drop the session cookie and the session's player."""
    registry.discard(user_id)
    response = JSONResponse({"success": True})
    clear_session_cookie(response, settings.auth)
    logger.info("User %s logged out", user_id)
    return response
