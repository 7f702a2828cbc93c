"""Dependency injection for API endpoints."""

import logging
from collections.abc import AsyncGenerator
from functools import partial
from typing import cast

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sonicvault.api.session import decode_session_token
from sonicvault.application.player import PlayerSession, PlayerSessionRegistry
from sonicvault.application.services import (
    CredentialLifecycleManager,
    DurationBackfill,
    LibraryService,
    SpotifyAuthService,
)
from sonicvault.application.use_cases import AcquireTrackUseCase
from sonicvault.config import Settings
from sonicvault.domain.exceptions import AuthenticationError
from sonicvault.domain.ports import IBlobStore, IConversionProvider
from sonicvault.infrastructure.integrations import SpotifyClient
from sonicvault.infrastructure.persistence import (
    AcquisitionRecordRepository,
    CredentialRepository,
    Database,
    record_store_scope,
)

logger = logging.getLogger(__name__)


# Hey future me, everything long-lived (db, clients, blob store, credential manager, player
# registry) is built ONCE in the lifespan and parked on app.state. These getters just hand it
# out. A missing attribute means startup didn't run - answer 503 instead of crashing.
def _from_state(request: Request, name: str) -> object:
    if not hasattr(request.app.state, name):
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return getattr(request.app.state, name)


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with."""
    return cast(Settings, _from_state(request, "settings"))


def get_database(request: Request) -> Database:
    return cast(Database, _from_state(request, "db"))


# Hey future me - one session per request, committed by session_scope() when the endpoint
# returns cleanly and rolled back when it raises. Use this in endpoint params like:
# "session: AsyncSession = Depends(get_db_session)"
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get a transactional database session for the request."""
    db = get_database(request)
    async with db.session_scope() as session:
        yield session


def get_spotify_client(request: Request) -> SpotifyClient:
    return cast(SpotifyClient, _from_state(request, "spotify_client"))


def get_conversion_provider(request: Request) -> IConversionProvider:
    return cast(IConversionProvider, _from_state(request, "conversion_client"))


def get_blob_store(request: Request) -> IBlobStore:
    return cast(IBlobStore, _from_state(request, "blob_store"))


def get_credential_manager(request: Request) -> CredentialLifecycleManager:
    return cast(CredentialLifecycleManager, _from_state(request, "credential_manager"))


def get_player_registry(request: Request) -> PlayerSessionRegistry:
    return cast(PlayerSessionRegistry, _from_state(request, "player_sessions"))


# Yo, this is the auth gate for every user route. Missing or invalid cookie -> 401 via the
# AuthenticationError handler. It only proves who the caller is; whether we can still talk to
# Spotify for them is the credential manager's business.
def get_session_user_id(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> str:
    """User id from the signed session cookie."""
    token = request.cookies.get(settings.auth.cookie_name)
    if not token:
        raise AuthenticationError("Unauthorized")
    return decode_session_token(token, settings.auth)


def get_credential_repository(
    session: AsyncSession = Depends(get_db_session),
) -> CredentialRepository:
    return CredentialRepository(session)


def get_record_repository(
    session: AsyncSession = Depends(get_db_session),
) -> AcquisitionRecordRepository:
    return AcquisitionRecordRepository(session)


def get_auth_service(
    client: SpotifyClient = Depends(get_spotify_client),
) -> SpotifyAuthService:
    return SpotifyAuthService(client)


def get_acquire_track_use_case(
    records: AcquisitionRecordRepository = Depends(get_record_repository),
    provider: IConversionProvider = Depends(get_conversion_provider),
    blob_store: IBlobStore = Depends(get_blob_store),
    catalog: SpotifyClient = Depends(get_spotify_client),
    credentials: CredentialLifecycleManager = Depends(get_credential_manager),
) -> AcquireTrackUseCase:
    return AcquireTrackUseCase(
        record_store=records,
        conversion_provider=provider,
        blob_store=blob_store,
        catalog=catalog,
        credentials=credentials,
    )


def get_library_service(
    records: AcquisitionRecordRepository = Depends(get_record_repository),
    blob_store: IBlobStore = Depends(get_blob_store),
) -> LibraryService:
    return LibraryService(records, blob_store)


# The backfill runs after the response, when the request session is already closed,
# so it gets its own session per run.
def get_duration_backfill(
    db: Database = Depends(get_database),
    catalog: SpotifyClient = Depends(get_spotify_client),
    credentials: CredentialLifecycleManager = Depends(get_credential_manager),
) -> DurationBackfill:
    return DurationBackfill(
        record_scope=partial(record_store_scope, db),
        catalog=catalog,
        credentials=credentials,
    )


def get_player_session(
    user_id: str = Depends(get_session_user_id),
    registry: PlayerSessionRegistry = Depends(get_player_registry),
) -> PlayerSession:
    """The calling session's player."""
    return registry.get(user_id)
