"""Application lifecycle management for startup and shutdown tasks.

This module holds the FastAPI lifespan context manager. Everything long-lived is built here
once and parked on app.state, where api.dependencies picks it up:

- db                  Database (async engine + session factory)
- spotify_client      SpotifyClient (accounts + Web API)
- conversion_client   ConversionProviderClient
- blob_store          LocalBlobStore or S3BlobStore
- credential_manager  CredentialLifecycleManager (owns the per-user refresh locks)
- player_sessions     PlayerSessionRegistry (one playback queue per session)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI

from sonicvault.application.player import PlayerSessionRegistry
from sonicvault.application.services import CredentialLifecycleManager
from sonicvault.config import Settings, get_settings
from sonicvault.domain.entities import utc_now
from sonicvault.domain.exceptions import ConfigurationError
from sonicvault.infrastructure.integrations import (
    ConversionProviderClient,
    HttpClientPool,
    SpotifyClient,
)
from sonicvault.infrastructure.observability import configure_logging
from sonicvault.infrastructure.persistence import Database, credential_store_scope
from sonicvault.infrastructure.storage import create_blob_store

logger = logging.getLogger(__name__)


# Hey future me, this validates the SQLite path BEFORE the engine exists. SQLite needs to create
# -journal/-wal files next to the .db file, so the directory must exist AND be writable. We
# don't pre-create the .db file itself; SQLite does that properly on first connect. Returns
# early for PostgreSQL and in-memory URLs.
def _validate_sqlite_path(settings: Settings) -> None:
    """Validate SQLite database path accessibility before engine creation."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured SQLite parent directory exists: %s", db_path.parent)
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"SQLite database directory '{db_path.parent}' is not writable: {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc


def _ensure_storage_directory(settings: Settings) -> None:
    if settings.storage.backend != "local":
        return
    try:
        settings.storage.local_path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create storage directory '{settings.storage.local_path}': {exc}"
        ) from exc


# Yo, session cookies are only as good as this secret. Anyone who knows it can mint a cookie for
# any user id, so there is no built-in fallback value; refuse to start instead.
def _validate_session_secret(settings: Settings) -> None:
    if not settings.auth.jwt_secret.strip():
        raise ConfigurationError(
            "AUTH_JWT_SECRET is not set. Generate one (e.g. `openssl rand -hex 32`) and "
            "add it to the environment or .env."
        )


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# The try/finally makes sure the engine and the shared HTTP pool are closed even when startup
# blows up halfway. Settings come from app.state (create_app puts them there) so tests can run
# the real lifespan against an in-memory database.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    app.state.settings = settings

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    try:
        _validate_session_secret(settings)
        _validate_sqlite_path(settings)
        _ensure_storage_directory(settings)

        db = Database(settings)
        app.state.db = db
        # SQLite installs get their schema on first start; PostgreSQL goes through Alembic
        if settings.database.url.startswith("sqlite"):
            await db.create_tables()
        logger.info("Database initialized: %s", settings.database.url.split("@")[-1])

        spotify_client = SpotifyClient(settings.spotify)
        app.state.spotify_client = spotify_client
        app.state.conversion_client = ConversionProviderClient(settings.conversion)

        app.state.blob_store = create_blob_store(settings.storage)
        logger.info("Blob storage backend: %s", settings.storage.backend)

        app.state.credential_manager = CredentialLifecycleManager(
            store_scope=partial(credential_store_scope, db),
            exchanger=spotify_client,
        )
        app.state.player_sessions = PlayerSessionRegistry()
        app.state.startup_time = utc_now()

        yield
    finally:
        logger.info("Shutting down application")

        db = getattr(app.state, "db", None)
        if db is not None:
            try:
                await db.close()
                logger.info("Database connection closed")
            except Exception as e:
                logger.exception("Error closing database: %s", e)

        try:
            await HttpClientPool.close()
        except Exception as e:
            logger.exception("Error closing HTTP client pool: %s", e)
