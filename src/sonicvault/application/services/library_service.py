"""Library of acquired songs, plus the background duration backfill.

Hey future me - the conversion provider never tells us a track's length, so most records are
stored with duration_ms=0. Listing the library must NOT wait on Spotify for that, so the
listing only reads our own table and the route schedules DurationBackfill as a background
task that runs after the response went out. The backfill uses its own transaction, logs its
own failures and never raises - nobody is left to catch it.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

import httpx
from sqlalchemy.exc import SQLAlchemyError

from sonicvault.application.services.credential_lifecycle import (
    CredentialLifecycleManager,
)
from sonicvault.domain.entities import AcquisitionRecord
from sonicvault.domain.exceptions import DomainException
from sonicvault.domain.ports import IAcquisitionRecordStore, IBlobStore, ICatalogClient

logger = logging.getLogger(__name__)

RecordStoreScope = Callable[[], AbstractAsyncContextManager[IAcquisitionRecordStore]]


class LibraryService:
    """Read side of the acquired-song library."""

    def __init__(
        self, records: IAcquisitionRecordStore, blob_store: IBlobStore
    ) -> None:
        self._records = records
        self._blob_store = blob_store

    def with_public_url(self, record: AcquisitionRecord) -> AcquisitionRecord:
        """Attach the playable URL derived from the storage key."""
        record.public_url = self._blob_store.public_url(record.storage_key)
        return record

    async def list_songs(self, user_id: str) -> list[AcquisitionRecord]:
        """All acquired songs of a user, newest first."""
        records = await self._records.list_for_user(user_id)
        return [self.with_public_url(r) for r in records]

    @staticmethod
    def missing_durations(records: list[AcquisitionRecord]) -> list[str]:
        """Track references whose duration is still unknown."""
        return [r.track_reference for r in records if not r.duration_ms]


class DurationBackfill:
    """Fills duration_ms of stored songs from the catalog (fire-and-forget)."""

    def __init__(
        self,
        record_scope: RecordStoreScope,
        catalog: ICatalogClient,
        credentials: CredentialLifecycleManager,
    ) -> None:
        self._record_scope = record_scope
        self._catalog = catalog
        self._credentials = credentials

    async def run(self, user_id: str, track_references: list[str]) -> int:
        """Look up durations and store them. Returns the number of rows updated."""
        if not track_references:
            return 0

        try:
            access_token = await self._credentials.get_usable_credential(user_id)
            tracks = await self._catalog.get_tracks(track_references, access_token)
            durations = {t.id: t.duration_ms for t in tracks if t.duration_ms}
            if not durations:
                return 0
            async with self._record_scope() as records:
                updated = await records.update_durations(user_id, durations)
        except (DomainException, httpx.HTTPError, SQLAlchemyError) as e:
            logger.warning(
                "Duration backfill for user %s failed (%d tracks): %s",
                user_id,
                len(track_references),
                e,
            )
            return 0

        logger.info(
            "Duration backfill for user %s: %d of %d songs updated",
            user_id,
            updated,
            len(track_references),
        )
        return updated
