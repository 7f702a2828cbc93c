"""API request/response schemas."""

from sonicvault.api.schemas.player import (
    PlayerSnapshot,
    PlayRequest,
    ProgressRequest,
    SeekRequest,
    TrackSchema,
)
from sonicvault.api.schemas.songs import (
    DownloadRequest,
    DownloadResponse,
    SongListResponse,
    SongSchema,
)

__all__ = [
    "DownloadRequest",
    "DownloadResponse",
    "PlayerSnapshot",
    "PlayRequest",
    "ProgressRequest",
    "SeekRequest",
    "SongListResponse",
    "SongSchema",
    "TrackSchema",
]
