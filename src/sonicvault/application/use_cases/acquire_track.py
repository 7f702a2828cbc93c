"""Use case for permanently acquiring ("downloading") a Spotify track for a user.

Hey future me - this is the DOWNLOAD button. The flow per request:

1. Lookup   - already have a record for (user, track)? Return it. Zero external calls.
2. Resolve  - build the open.spotify.com URL the provider wants (or use the hint as-is)
3. Convert  - ask the conversion provider for a download link + metadata
4. Transfer - pull the whole MP3 into memory
5. Store    - write it to blob storage under {user_id}/{track_id}.audio (overwrite is fine)
6. Record   - insert the songs row

Nothing is written to our database before step 6, so any failure in 3-5 can simply be retried
by calling execute() again. Two simultaneous requests for the same track both run steps 3-5
(the provider gets called twice); the unique (user_id, spotify_id) index picks the winner at
step 6 and the loser returns the winner's row. There is no lock around 3-6.
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.exc import SQLAlchemyError

from sonicvault.application.services.credential_lifecycle import (
    CredentialLifecycleManager,
)
from sonicvault.application.use_cases import UseCase
from sonicvault.domain.entities import AcquisitionRecord
from sonicvault.domain.exceptions import (
    AcquisitionError,
    AcquisitionStage,
    DomainException,
    RecordConflictError,
    RecordStoreError,
    ValidationException,
)
from sonicvault.domain.ports import (
    IAcquisitionRecordStore,
    IBlobStore,
    ICatalogClient,
    IConversionProvider,
)

logger = logging.getLogger(__name__)

SPOTIFY_TRACK_URL = "https://open.spotify.com/track/{track_id}"
AUDIO_CONTENT_TYPE = "audio/mpeg"


def track_id_from_url(url: str) -> str:
    """Last path segment of a track URL, query string removed.

    "https://open.spotify.com/track/abc123?si=xyz" -> "abc123"
    """
    path = url.split("?", 1)[0].split("#", 1)[0]
    return path.rstrip("/").rsplit("/", 1)[-1]


@dataclass
class AcquireTrackRequest:
    """Request to acquire one track.

    Hey future me - provide at least ONE of these:
    - track_reference: Spotify track ID (e.g., "4uLU6hMCjMI75M1A2tKUQC")
    - catalog_url_hint: full open.spotify.com track URL
    When both are given, track_reference names the record and the hint is sent to the provider.
    """

    user_id: str
    track_reference: str | None = None
    catalog_url_hint: str | None = None


@dataclass
class AcquireTrackResponse:
    """Acquired record and whether this call created it."""

    record: AcquisitionRecord
    created: bool


class AcquireTrackUseCase(UseCase[AcquireTrackRequest, AcquireTrackResponse]):
    """Convert a catalog reference into a stored audio asset, once per (user, track)."""

    def __init__(
        self,
        record_store: IAcquisitionRecordStore,
        conversion_provider: IConversionProvider,
        blob_store: IBlobStore,
        catalog: ICatalogClient | None = None,
        credentials: CredentialLifecycleManager | None = None,
    ) -> None:
        """Initialize the use case.

        Args:
            record_store: Acquisition record persistence
            conversion_provider: Reference-to-audio conversion service
            blob_store: Storage for the audio payload
            catalog: Optional catalog client used to fill in the track duration
            credentials: Credential manager for the catalog call (needed with catalog)
        """
        self._records = record_store
        self._provider = conversion_provider
        self._blob_store = blob_store
        self._catalog = catalog
        self._credentials = credentials

    @staticmethod
    def _resolve(request: AcquireTrackRequest) -> tuple[str, str]:
        track_reference = request.track_reference
        if not track_reference and request.catalog_url_hint:
            track_reference = track_id_from_url(request.catalog_url_hint)
        if not track_reference:
            raise ValidationException("Missing trackId or spotifyUrl")

        reference_url = request.catalog_url_hint or SPOTIFY_TRACK_URL.format(
            track_id=track_reference
        )
        return track_reference, reference_url

    # Yo, this is best-effort garnish. The provider doesn't report durations, so we try the
    # catalog once. Whatever goes wrong here is logged and the acquisition carries on with 0;
    # the library backfill gets another chance later.
    async def _lookup_duration(self, user_id: str, track_reference: str) -> int:
        if self._catalog is None or self._credentials is None:
            return 0
        try:
            access_token = await self._credentials.get_usable_credential(user_id)
            track = await self._catalog.get_track(track_reference, access_token)
        except (DomainException, httpx.HTTPError) as e:
            logger.debug("Duration lookup for %s skipped: %s", track_reference, e)
            return 0
        return track.duration_ms

    async def execute(self, request: AcquireTrackRequest) -> AcquireTrackResponse:
        """Acquire the track.

        Raises:
            ValidationException: Neither track id nor URL given
            ProviderUnavailableError / ProviderNoResultError: Convert step failed
            TransferFailedError: Audio download failed
            StorageWriteFailedError: Blob write failed
            RecordStoreError: Database failed at lookup or record
        """
        track_reference, reference_url = self._resolve(request)
        user_id = request.user_id

        # 1. Lookup
        try:
            existing = await self._records.get(user_id, track_reference)
        except SQLAlchemyError as e:
            raise RecordStoreError(
                f"Library lookup failed: {e}", AcquisitionStage.LOOKUP, track_reference
            ) from e
        if existing is not None:
            logger.info(
                "Track %s already acquired for user %s", track_reference, user_id
            )
            return AcquireTrackResponse(record=self._with_url(existing), created=False)

        # 2. Resolve (+ optional duration)
        duration_ms = await self._lookup_duration(user_id, track_reference)

        # 3. Convert
        logger.info("Converting %s for user %s", reference_url, user_id)
        try:
            conversion = await self._provider.convert(reference_url)
        except AcquisitionError as e:
            e.track_reference = e.track_reference or track_reference
            raise

        # 4. Transfer
        try:
            payload = await self._provider.fetch_audio(conversion.download_link)
        except AcquisitionError as e:
            e.track_reference = e.track_reference or track_reference
            raise
        logger.info(
            "Fetched %d bytes of audio for %s (%s - %s)",
            len(payload),
            track_reference,
            conversion.artist,
            conversion.title,
        )

        # 5. Store
        storage_key = AcquisitionRecord.storage_key_for(user_id, track_reference)
        try:
            await self._blob_store.put(storage_key, payload, AUDIO_CONTENT_TYPE)
        except AcquisitionError as e:
            e.track_reference = e.track_reference or track_reference
            raise

        # 6. Record
        record = AcquisitionRecord(
            user_id=user_id,
            track_reference=track_reference,
            title=conversion.title,
            artist=conversion.artist,
            album=conversion.album,
            cover_url=conversion.cover_url,
            storage_key=storage_key,
            duration_ms=duration_ms,
        )
        try:
            stored = await self._records.insert(record)
        except RecordConflictError as conflict:
            winner = await self._read_winner(user_id, track_reference)
            if winner is None:
                raise RecordStoreError(
                    "Conflicting record vanished before it could be read",
                    AcquisitionStage.RECORD,
                    track_reference,
                ) from conflict
            logger.info(
                "Concurrent acquisition of %s for user %s won by another request",
                track_reference,
                user_id,
            )
            return AcquireTrackResponse(record=self._with_url(winner), created=False)
        except SQLAlchemyError as e:
            raise RecordStoreError(
                f"Saving the library record failed: {e}",
                AcquisitionStage.RECORD,
                track_reference,
            ) from e

        logger.info("Acquired %s for user %s at %s", track_reference, user_id, storage_key)
        return AcquireTrackResponse(record=self._with_url(stored), created=True)

    async def _read_winner(
        self, user_id: str, track_reference: str
    ) -> AcquisitionRecord | None:
        try:
            return await self._records.get(user_id, track_reference)
        except SQLAlchemyError as e:
            raise RecordStoreError(
                f"Re-reading the library record failed: {e}",
                AcquisitionStage.RECORD,
                track_reference,
            ) from e

    def _with_url(self, record: AcquisitionRecord) -> AcquisitionRecord:
        record.public_url = self._blob_store.public_url(record.storage_key)
        return record

