"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime

from sonicvault.domain.entities import (
    AcquisitionRecord,
    CatalogTrack,
    ConversionResult,
    TokenGrant,
    UserCredential,
    UserProfile,
)


class ICredentialStore(ABC):
    """Port for per-user credential persistence."""

    @abstractmethod
    async def get(self, user_id: str) -> UserCredential | None:
        """Get stored credential for a user, None if the user is unknown."""
        pass

    @abstractmethod
    async def update_after_refresh(
        self,
        user_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> bool:
        """Conditionally update the credential row after a successful refresh.

        refresh_token is only written when not None. Returns False when no row matched.
        """
        pass

    @abstractmethod
    async def upsert_authorized(
        self, profile: UserProfile, grant: TokenGrant
    ) -> str:
        """Create or update a user after first/renewed authorization; returns user id."""
        pass


class ITokenExchanger(ABC):
    """Port for the authorization server refresh exchange."""

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Raises:
            TokenExchangeError: server rejected the exchange or answered garbage
            httpx.HTTPError: transport failure
        """
        pass


class ICatalogClient(ABC):
    """Port for read-only catalog access."""

    @abstractmethod
    async def get_track(self, track_id: str, access_token: str) -> CatalogTrack:
        """Get one track."""
        pass

    @abstractmethod
    async def get_tracks(
        self, track_ids: list[str], access_token: str
    ) -> list[CatalogTrack]:
        """Get several tracks (implementations batch as needed)."""
        pass


class IConversionProvider(ABC):
    """Port for the reference-to-audio conversion provider."""

    @abstractmethod
    async def convert(self, reference_url: str) -> ConversionResult:
        """Ask the provider for a downloadable rendition of reference_url.

        Raises:
            ProviderUnavailableError: transport error or non-success status
            ProviderNoResultError: success=false or no download link
        """
        pass

    @abstractmethod
    async def fetch_audio(self, download_link: str) -> bytes:
        """Fetch the whole audio payload into memory.

        Raises:
            TransferFailedError: transport error or non-success status
        """
        pass


class IBlobStore(ABC):
    """Port for acquired-audio blob storage."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        """Write data under key, overwriting any existing object. Returns the key.

        Raises:
            StorageWriteFailedError: on any storage error
        """
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Stable public retrieval URL for key."""
        pass


class IAcquisitionRecordStore(ABC):
    """Port for the acquisition record table."""

    @abstractmethod
    async def get(self, user_id: str, track_reference: str) -> AcquisitionRecord | None:
        """Get the record for a (user, track) pair."""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[AcquisitionRecord]:
        """All records of a user, newest first."""
        pass

    @abstractmethod
    async def insert(self, record: AcquisitionRecord) -> AcquisitionRecord:
        """Insert a record.

        Raises:
            RecordConflictError: when (user_id, track_reference) already exists
        """
        pass

    @abstractmethod
    async def update_durations(self, user_id: str, durations: dict[str, int]) -> int:
        """Set duration_ms for records of user_id; returns rows updated."""
        pass


class IAudioSink(ABC):
    """Port for the single audio output driven by the playback queue."""

    @abstractmethod
    def load(self, source_url: str) -> None:
        """Replace the current source (never appends)."""
        pass

    @abstractmethod
    def play(self) -> None:
        """Start or resume playback."""
        pass

    @abstractmethod
    def pause(self) -> None:
        """Pause playback."""
        pass

    @abstractmethod
    def seek(self, seconds: float) -> None:
        """Move the playback position."""
        pass

    @property
    @abstractmethod
    def position(self) -> float:
        """Current playback position in seconds."""
        pass

    @property
    @abstractmethod
    def duration(self) -> float | None:
        """Duration of the loaded source, None if unknown."""
        pass


__all__ = [
    "IAcquisitionRecordStore",
    "IAudioSink",
    "IBlobStore",
    "ICatalogClient",
    "IConversionProvider",
    "ICredentialStore",
    "ITokenExchanger",
]
