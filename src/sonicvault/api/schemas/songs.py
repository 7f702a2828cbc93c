"""API schemas for acquired songs and downloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from sonicvault.domain.entities import AcquisitionRecord


class SongSchema(BaseModel):
    """An acquired song as the frontend sees it."""

    id: str | None = Field(default=None, description="Song record ID")
    user_id: str = Field(..., description="Owning profile ID")
    spotify_id: str = Field(..., description="Spotify track ID")
    title: str
    artist: str
    album: str | None = None
    cover_url: str | None = None
    storage_path: str = Field(..., description="Blob storage key")
    public_url: str | None = Field(default=None, description="Playable URL")
    duration_ms: int = 0
    created_at: datetime

    @classmethod
    def from_record(cls, record: AcquisitionRecord) -> "SongSchema":
        return cls(
            id=record.id,
            user_id=record.user_id,
            spotify_id=record.track_reference,
            title=record.title,
            artist=record.artist,
            album=record.album,
            cover_url=record.cover_url,
            storage_path=record.storage_key,
            public_url=record.public_url,
            duration_ms=record.duration_ms,
            created_at=record.created_at,
        )


class DownloadRequest(BaseModel):
    """Body of POST /api/download. At least one field is required."""

    model_config = ConfigDict(populate_by_name=True)

    track_id: str | None = Field(default=None, alias="trackId")
    spotify_url: str | None = Field(default=None, alias="spotifyUrl")


class DownloadResponse(BaseModel):
    """Result of a download request."""

    success: bool = True
    created: bool = Field(..., description="False when the song was already stored")
    message: str | None = None
    song: SongSchema


class SongListResponse(BaseModel):
    """GET /api/my-songs payload."""

    songs: list[SongSchema]
