"""Application services."""

from sonicvault.application.services.credential_lifecycle import (
    CredentialLifecycleManager,
)
from sonicvault.application.services.library_service import (
    DurationBackfill,
    LibraryService,
)
from sonicvault.application.services.spotify_auth_service import (
    AuthorizationResult,
    AuthUrlResult,
    SpotifyAuthService,
)

__all__ = [
    "AuthorizationResult",
    "AuthUrlResult",
    "CredentialLifecycleManager",
    "DurationBackfill",
    "LibraryService",
    "SpotifyAuthService",
]
