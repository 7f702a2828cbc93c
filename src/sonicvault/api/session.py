"""Signed session cookie (JWT) helpers.

The cookie holds {"userId": <profile id>} signed with AUTH_JWT_SECRET and expires after
AUTH_SESSION_MAX_AGE seconds (7 days by default). Nothing else about the user lives in it;
tokens stay in the database.
"""

from datetime import timedelta

import jwt
from fastapi import Response

from sonicvault.config import AuthSettings
from sonicvault.domain.entities import utc_now
from sonicvault.domain.exceptions import AuthenticationError


def create_session_token(user_id: str, settings: AuthSettings) -> str:
    """Sign a session token for user_id."""
    now = utc_now()
    payload = {
        "userId": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=settings.session_max_age),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str, settings: AuthSettings) -> str:
    """Verify a session token and return its user id.

    Raises:
        AuthenticationError: Token expired, tampered with or malformed
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Session expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid session") from e

    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid session")
    return user_id


def set_session_cookie(response: Response, token: str, settings: AuthSettings) -> None:
    """Attach the session cookie (httpOnly, SameSite=Lax)."""
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=settings.session_max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: AuthSettings) -> None:
    """Remove the session cookie."""
    response.delete_cookie(
        key=settings.cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
