"""API schemas for the player."""

from typing import Any

from pydantic import BaseModel, Field

from sonicvault.domain.entities import TrackDescriptor


class TrackSchema(BaseModel):
    """Something playable: an acquired song or a catalog preview."""

    id: str
    title: str
    artist: str
    playable_url: str = Field(..., description="URL the <audio> element loads")
    cover_url: str | None = None
    duration_seconds: float | None = None

    def to_descriptor(self) -> TrackDescriptor:
        return TrackDescriptor(
            id=self.id,
            title=self.title,
            artist=self.artist,
            playable_url=self.playable_url,
            cover_url=self.cover_url,
            duration_seconds=self.duration_seconds,
        )


class PlayRequest(BaseModel):
    """Start playing track, optionally from a queue (the track should be in it)."""

    track: TrackSchema
    queue: list[TrackSchema] | None = None


class SeekRequest(BaseModel):
    time: float = Field(..., description="Target position in seconds")


class ProgressRequest(BaseModel):
    """Client-side playback position report."""

    position: float = Field(..., ge=0)
    duration: float | None = Field(default=None, gt=0)


class PlayerSnapshot(BaseModel):
    """Current player state for one session."""

    state: str
    playing: bool
    current_index: int
    current_track: dict[str, Any] | None
    queue: list[dict[str, Any]]
    repeat_policy: str
    position: float
    duration: float | None
    source_url: str | None
    paused: bool
