"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Hey future me - each settings group reads its OWN env prefix (SPOTIFY_, DATABASE_, ...).
# They all share the same .env file, so a single file configures the whole app.
# extra="ignore" matters: without it, every unrelated env var would blow up validation.
class SpotifySettings(BaseSettings):
    """Spotify OAuth application credentials."""

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_", env_file=".env", extra="ignore"
    )

    client_id: str = Field(default="", description="Spotify application client ID")
    client_secret: str = Field(
        default="", description="Spotify application client secret"
    )
    redirect_uri: str = Field(
        default="http://localhost:8000/api/auth/callback",
        description="OAuth redirect URI (must match the Spotify dashboard)",
    )
    scopes: str = Field(
        default="user-read-private user-read-email user-library-read",
        description="Space-separated OAuth scopes",
    )
    api_base_url: str = Field(default="https://api.spotify.com/v1")
    accounts_base_url: str = Field(default="https://accounts.spotify.com")
    timeout: float = Field(default=30.0, ge=1.0)


class ConversionSettings(BaseSettings):
    """Conversion provider (reference URL to audio) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERSION_", env_file=".env", extra="ignore"
    )

    api_key: str = Field(default="", description="RapidAPI key for the provider")
    host: str = Field(default="spotify-downloader9.p.rapidapi.com")
    base_url: str = Field(default="https://spotify-downloader9.p.rapidapi.com")
    timeout: float = Field(
        default=60.0, ge=1.0, description="Timeout for conversion and transfer calls"
    )


class StorageSettings(BaseSettings):
    """Blob storage for acquired audio."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_", env_file=".env", extra="ignore"
    )

    backend: Literal["local", "s3"] = Field(default="local")
    local_path: Path = Field(default=Path("./data/music"))
    # Local backend serves files from this URL prefix (mounted by the app)
    public_base_url: str = Field(default="/media")
    s3_endpoint_url: str | None = Field(default=None)
    s3_bucket: str = Field(default="music")
    s3_access_key_id: str | None = Field(default=None)
    s3_secret_access_key: str | None = Field(default=None)
    s3_region: str = Field(default="auto")

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Normalize the base URL so keys can be appended with a single slash."""
        return value.rstrip("/")


class DatabaseSettings(BaseSettings):
    """Database connection configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_", env_file=".env", extra="ignore"
    )

    url: str = Field(default="sqlite+aiosqlite:///./data/sonicvault.db")
    echo: bool = Field(default=False)
    pool_pre_ping: bool = Field(default=True)
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)


class AuthSettings(BaseSettings):
    """Session cookie configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_", env_file=".env", extra="ignore"
    )

    # No usable default: startup refuses to run with an empty secret
    jwt_secret: str = Field(default="", description="HMAC secret for session JWTs")
    jwt_algorithm: str = Field(default="HS256")
    cookie_name: str = Field(default="session")
    session_max_age: int = Field(default=7 * 24 * 3600, ge=60)
    cookie_secure: bool = Field(default=False)
    post_login_redirect: str = Field(
        default="/", description="Where the OAuth callback sends the browser"
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_file=".env", extra="ignore"
    )

    log_json_format: bool = Field(default=False)
    log_request_body: bool = Field(default=False)


class Settings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = Field(default="sonicvault")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    conversion: ConversionSettings = Field(default_factory=ConversionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite file path, or None for in-memory/non-SQLite URLs."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path == ":memory:":
            return None
        return Path(path)


# Yo, lru_cache makes this a process-wide singleton. Tests that need different settings should
# build Settings(...) directly and override the FastAPI dependency, NOT mutate this one.
@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
