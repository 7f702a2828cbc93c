"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, ClassVar


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite hands datetimes back WITHOUT tzinfo even when we stored UTC.
# Comparing naive with aware datetimes raises TypeError, so anything read from the DB that
# gets compared with utc_now() goes through this first.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


@dataclass
class UserCredential:
    """Access/refresh token pair used to call the catalog on a user's behalf.

    expires_at can be None when the authorization server never told us; such a
    credential is always treated as stale.
    """

    SAFETY_MARGIN: ClassVar[timedelta] = timedelta(minutes=5)

    user_id: str
    access_token: str | None
    refresh_token: str | None
    expires_at: datetime | None

    def is_stale(self, now: datetime | None = None) -> bool:
        """True when the access token is missing or expires within the safety margin."""
        if not self.access_token or self.expires_at is None:
            return True
        now = now or utc_now()
        return ensure_utc_aware(self.expires_at) - now < self.SAFETY_MARGIN


@dataclass
class TokenGrant:
    """Result of an authorization-server token exchange.

    refresh_token is None when the server did not rotate it - keep the old one then!
    """

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def expires_at(self, now: datetime | None = None) -> datetime:
        """Absolute expiry computed from expires_in."""
        return (now or utc_now()) + timedelta(seconds=self.expires_in)


@dataclass
class UserProfile:
    """Spotify account profile captured at authorization time."""

    spotify_user_id: str
    display_name: str | None = None
    email: str | None = None
    country: str | None = None
    product_type: str | None = None
    profile_image_url: str | None = None
    # Our own profile id, None until the profile has been stored
    id: str | None = None

    @classmethod
    def from_spotify(cls, data: dict[str, Any]) -> "UserProfile":
        """Build from a Spotify /me payload."""
        images = data.get("images") or []
        return cls(
            spotify_user_id=data["id"],
            display_name=data.get("display_name"),
            email=data.get("email"),
            country=data.get("country"),
            product_type=data.get("product"),
            profile_image_url=images[0].get("url") if images else None,
        )


@dataclass
class AcquisitionRecord:
    """A track permanently acquired for a user.

    At most one per (user_id, track_reference) - enforced by the database.
    storage_key is only ever set to a key whose blob write completed.
    """

    user_id: str
    track_reference: str
    title: str
    artist: str
    storage_key: str
    album: str | None = None
    cover_url: str | None = None
    duration_ms: int = 0
    id: str | None = None
    public_url: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @staticmethod
    def storage_key_for(user_id: str, track_reference: str) -> str:
        """Deterministic blob key for a (user, track) pair."""
        return f"{user_id}/{track_reference}.audio"


@dataclass
class CatalogTrack:
    """Track metadata from the external catalog."""

    id: str
    title: str
    artists: list[str]
    album: str | None = None
    duration_ms: int = 0
    preview_url: str | None = None
    cover_url: str | None = None

    @classmethod
    def from_spotify(cls, data: dict[str, Any]) -> "CatalogTrack":
        """Build from a Spotify track object."""
        album = data.get("album") or {}
        images = album.get("images") or []
        return cls(
            id=data["id"],
            title=data.get("name", ""),
            artists=[a.get("name", "") for a in data.get("artists", [])],
            album=album.get("name"),
            duration_ms=data.get("duration_ms") or 0,
            preview_url=data.get("preview_url"),
            cover_url=images[0].get("url") if images else None,
        )


@dataclass
class ConversionResult:
    """Successful answer from the conversion provider."""

    title: str
    artist: str
    download_link: str
    album: str | None = None
    cover_url: str | None = None


# Hey future me - this is the value the PlaybackQueue moves around. frozen=True because the
# queue tuple is immutable once installed and its elements should be too.
@dataclass(frozen=True)
class TrackDescriptor:
    """Something the player can play: an acquired song or a catalog preview."""

    id: str
    title: str
    artist: str
    playable_url: str
    cover_url: str | None = None
    duration_seconds: float | None = None

    @classmethod
    def from_record(cls, record: AcquisitionRecord) -> "TrackDescriptor":
        """Descriptor for an acquired track."""
        return cls(
            id=record.track_reference,
            title=record.title,
            artist=record.artist,
            playable_url=record.public_url or "",
            cover_url=record.cover_url,
            duration_seconds=record.duration_ms / 1000 if record.duration_ms else None,
        )


class RepeatPolicy(str, Enum):
    """What happens at queue boundaries and on track completion."""

    NONE = "none"
    REPEAT_QUEUE = "repeat_queue"
    REPEAT_TRACK = "repeat_track"

    def next_policy(self) -> "RepeatPolicy":
        """Cycle NONE -> REPEAT_QUEUE -> REPEAT_TRACK -> NONE."""
        order = [RepeatPolicy.NONE, RepeatPolicy.REPEAT_QUEUE, RepeatPolicy.REPEAT_TRACK]
        return order[(order.index(self) + 1) % len(order)]


class PlayerState(str, Enum):
    """Playback queue state."""

    IDLE = "idle"
    LOADED = "loaded"


__all__ = [
    "AcquisitionRecord",
    "CatalogTrack",
    "ConversionResult",
    "PlayerState",
    "RepeatPolicy",
    "TokenGrant",
    "TrackDescriptor",
    "UserCredential",
    "UserProfile",
    "ensure_utc_aware",
    "utc_now",
]
