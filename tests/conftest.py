"""Shared fixtures: isolated settings and an in-memory database per test."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from sonicvault.config import (
    AuthSettings,
    ConversionSettings,
    DatabaseSettings,
    Settings,
    SpotifySettings,
    StorageSettings,
)
from sonicvault.infrastructure.persistence import Database, ProfileModel


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at an in-memory SQLite DB and a temp media directory."""
    return Settings(
        app_name="sonicvault-test",
        log_level="DEBUG",
        spotify=SpotifySettings(client_id="client-id", client_secret="client-secret"),
        conversion=ConversionSettings(api_key="rapid-key"),
        storage=StorageSettings(backend="local", local_path=tmp_path / "music"),
        database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        auth=AuthSettings(jwt_secret="test-secret"),
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    """Fresh schema in a private in-memory database."""
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.close()


# Hey future me - songs.user_id has a real FK to profiles.id (PRAGMA foreign_keys=ON),
# so any test that stores songs needs this profile first.
@pytest.fixture
async def profile_id(database: Database) -> str:
    """ID of a stored profile without tokens."""
    async with database.session_scope() as session:
        profile = ProfileModel(spotify_user_id="spotify-user-1", display_name="Test User")
        session.add(profile)
        await session.flush()
        return profile.id
