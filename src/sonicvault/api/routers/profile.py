"""Current user's profile."""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends

from sonicvault.api.dependencies import get_credential_repository, get_session_user_id
from sonicvault.domain.exceptions import EntityNotFoundException
from sonicvault.infrastructure.persistence import CredentialRepository

router = APIRouter()


@router.get("/me")
async def me(
    user_id: str = Depends(get_session_user_id),
    repository: CredentialRepository = Depends(get_credential_repository),
) -> dict[str, Any]:
    """Stored Spotify profile of the session user (tokens are never returned)."""
    profile = await repository.get_profile(user_id)
    if profile is None:
        raise EntityNotFoundException("Profile", user_id)
    return asdict(profile)
