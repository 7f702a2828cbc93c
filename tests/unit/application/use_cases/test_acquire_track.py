"""Tests for AcquireTrackUseCase."""

import asyncio
from collections.abc import AsyncGenerator
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from sonicvault.application.use_cases.acquire_track import (
    AUDIO_CONTENT_TYPE,
    AcquireTrackRequest,
    AcquireTrackResponse,
    AcquireTrackUseCase,
    track_id_from_url,
)
from sonicvault.config import DatabaseSettings, Settings
from sonicvault.domain.entities import AcquisitionRecord, CatalogTrack, ConversionResult
from sonicvault.domain.exceptions import (
    AcquisitionError,
    AcquisitionStage,
    ProviderNoResultError,
    ProviderUnavailableError,
    RecordConflictError,
    RecordStoreError,
    StorageWriteFailedError,
    TransferFailedError,
    ValidationException,
)
from sonicvault.domain.ports import (
    IAcquisitionRecordStore,
    IBlobStore,
    ICatalogClient,
    IConversionProvider,
)
from sonicvault.infrastructure.persistence import Database, ProfileModel, record_store_scope
from sonicvault.infrastructure.storage import LocalBlobStore


class InMemoryRecordStore(IAcquisitionRecordStore):
    """Record store with the same uniqueness rule as the songs table."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], AcquisitionRecord] = {}

    async def get(self, user_id: str, track_reference: str) -> AcquisitionRecord | None:
        record = self.records.get((user_id, track_reference))
        return replace(record) if record else None

    async def list_for_user(self, user_id: str) -> list[AcquisitionRecord]:
        return [replace(r) for (u, _), r in self.records.items() if u == user_id]

    async def insert(self, record: AcquisitionRecord) -> AcquisitionRecord:
        key = (record.user_id, record.track_reference)
        if key in self.records:
            raise RecordConflictError(record.user_id, record.track_reference)
        stored = replace(record, id=str(uuid4()))
        self.records[key] = stored
        return replace(stored)

    async def update_durations(self, user_id: str, durations: dict[str, int]) -> int:
        raise NotImplementedError


class FakeConversionProvider(IConversionProvider):
    """Provider that yields to the loop on every call so requests can interleave."""

    def __init__(self, payload: bytes = b"ID3-audio") -> None:
        self.payload = payload
        self.convert_calls: list[str] = []
        self.fetch_calls: list[str] = []
        self.convert_error: Exception | None = None
        self.fetch_error: Exception | None = None

    async def convert(self, reference_url: str) -> ConversionResult:
        self.convert_calls.append(reference_url)
        await asyncio.sleep(0)
        if self.convert_error:
            raise self.convert_error
        return ConversionResult(
            title="Song",
            artist="Artist",
            download_link="https://cdn.provider.test/file.mp3",
            album="Album",
            cover_url="https://img.test/cover.jpg",
        )

    async def fetch_audio(self, download_link: str) -> bytes:
        self.fetch_calls.append(download_link)
        await asyncio.sleep(0)
        if self.fetch_error:
            raise self.fetch_error
        return self.payload


class FakeBlobStore(IBlobStore):
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.puts: list[tuple[str, str]] = []
        self.error: Exception | None = None

    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        self.puts.append((key, content_type))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        self.blobs[key] = data
        return key

    def public_url(self, key: str) -> str:
        return f"https://media.test/{key}"


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def provider() -> FakeConversionProvider:
    return FakeConversionProvider()


@pytest.fixture
def blobs() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def use_case(
    records: InMemoryRecordStore, provider: FakeConversionProvider, blobs: FakeBlobStore
) -> AcquireTrackUseCase:
    return AcquireTrackUseCase(
        record_store=records, conversion_provider=provider, blob_store=blobs
    )


class TestTrackIdFromUrl:
    def test_strips_query_string(self) -> None:
        assert track_id_from_url("https://open.spotify.com/track/abc123?si=xyz") == "abc123"

    def test_trailing_slash(self) -> None:
        assert track_id_from_url("https://open.spotify.com/track/abc123/") == "abc123"

    def test_trailing_slash_before_query_string(self) -> None:
        assert track_id_from_url("https://open.spotify.com/track/abc123/?si=xyz") == "abc123"

    def test_fragment(self) -> None:
        assert track_id_from_url("https://open.spotify.com/track/abc123#top") == "abc123"


class TestAcquireTrack:
    """Tests for the happy path and idempotence."""

    async def test_first_acquisition_stores_blob_and_record(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        provider: FakeConversionProvider,
        blobs: FakeBlobStore,
    ) -> None:
        response = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert response.created is True
        assert response.record.storage_key == "u1/t1.audio"
        assert response.record.public_url == "https://media.test/u1/t1.audio"
        assert response.record.title == "Song"
        assert provider.convert_calls == ["https://open.spotify.com/track/t1"]
        assert blobs.blobs["u1/t1.audio"] == b"ID3-audio"
        assert blobs.puts == [("u1/t1.audio", AUDIO_CONTENT_TYPE)]
        assert ("u1", "t1") in records.records

    async def test_second_acquisition_makes_no_external_calls(
        self,
        use_case: AcquireTrackUseCase,
        provider: FakeConversionProvider,
        blobs: FakeBlobStore,
    ) -> None:
        first = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))
        second = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert second.created is False
        assert second.record.id == first.record.id
        assert second.record.storage_key == first.record.storage_key
        assert len(provider.convert_calls) == 1
        assert len(provider.fetch_calls) == 1
        assert len(blobs.puts) == 1

    async def test_same_track_for_different_users_is_separate(
        self, use_case: AcquireTrackUseCase, records: InMemoryRecordStore
    ) -> None:
        await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))
        await use_case.execute(AcquireTrackRequest(user_id="u2", track_reference="t1"))

        assert set(records.records) == {("u1", "t1"), ("u2", "t1")}

    async def test_url_hint_only(
        self, use_case: AcquireTrackUseCase, provider: FakeConversionProvider
    ) -> None:
        hint = "https://open.spotify.com/track/abc123?si=share"

        response = await use_case.execute(AcquireTrackRequest(user_id="u1", catalog_url_hint=hint))

        assert response.record.track_reference == "abc123"
        assert response.record.storage_key == "u1/abc123.audio"
        # The hint goes to the provider unchanged
        assert provider.convert_calls == [hint]

    async def test_missing_reference_and_hint(self, use_case: AcquireTrackUseCase) -> None:
        with pytest.raises(ValidationException):
            await use_case.execute(AcquireTrackRequest(user_id="u1"))


class TestAcquisitionFailures:
    """Failures surface the stage and leave no record behind."""

    async def test_provider_unavailable(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        provider: FakeConversionProvider,
        blobs: FakeBlobStore,
    ) -> None:
        provider.convert_error = ProviderUnavailableError("HTTP 502", http_status=502)

        with pytest.raises(ProviderUnavailableError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.CONVERT
        assert exc_info.value.track_reference == "t1"
        assert records.records == {}
        assert blobs.puts == []

    async def test_provider_no_result(
        self, use_case: AcquireTrackUseCase, provider: FakeConversionProvider
    ) -> None:
        provider.convert_error = ProviderNoResultError("no downloadLink")

        with pytest.raises(ProviderNoResultError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.CONVERT

    async def test_transfer_failed(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        provider: FakeConversionProvider,
        blobs: FakeBlobStore,
    ) -> None:
        provider.fetch_error = TransferFailedError("HTTP 404", http_status=404)

        with pytest.raises(TransferFailedError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.TRANSFER
        assert records.records == {}
        assert blobs.puts == []

    async def test_store_failed(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        blobs: FakeBlobStore,
    ) -> None:
        blobs.error = StorageWriteFailedError("disk full")

        with pytest.raises(StorageWriteFailedError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.STORE
        assert exc_info.value.track_reference == "t1"
        assert records.records == {}

    async def test_retry_after_failure_succeeds(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        provider: FakeConversionProvider,
    ) -> None:
        provider.fetch_error = TransferFailedError("timeout")
        with pytest.raises(TransferFailedError):
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        provider.fetch_error = None
        response = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert response.created is True
        assert len(records.records) == 1


class FailingLookupStore(InMemoryRecordStore):
    async def get(self, user_id: str, track_reference: str) -> AcquisitionRecord | None:
        raise OperationalError("SELECT songs", {}, Exception("database is locked"))


class FailingInsertStore(InMemoryRecordStore):
    async def insert(self, record: AcquisitionRecord) -> AcquisitionRecord:
        raise OperationalError("INSERT songs", {}, Exception("disk I/O error"))


class VanishingWinnerStore(InMemoryRecordStore):
    """Reports a conflict, then the winning row is gone on re-read."""

    async def insert(self, record: AcquisitionRecord) -> AcquisitionRecord:
        raise RecordConflictError(record.user_id, record.track_reference)


class TestRecordStoreFailures:
    """Database failures are tagged with the stage they happened in."""

    async def test_lookup_failure(
        self, provider: FakeConversionProvider, blobs: FakeBlobStore
    ) -> None:
        use_case = AcquireTrackUseCase(FailingLookupStore(), provider, blobs)

        with pytest.raises(RecordStoreError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.LOOKUP
        assert exc_info.value.track_reference == "t1"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert provider.convert_calls == []

    async def test_insert_failure(
        self, provider: FakeConversionProvider, blobs: FakeBlobStore
    ) -> None:
        use_case = AcquireTrackUseCase(FailingInsertStore(), provider, blobs)

        with pytest.raises(RecordStoreError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert exc_info.value.stage is AcquisitionStage.RECORD
        assert isinstance(exc_info.value.__cause__, OperationalError)
        # Audio was stored; a retry overwrites it under the same key
        assert list(blobs.blobs) == ["u1/t1.audio"]

    async def test_conflict_without_winner_is_not_a_conflict_error(
        self, provider: FakeConversionProvider, blobs: FakeBlobStore
    ) -> None:
        use_case = AcquireTrackUseCase(VanishingWinnerStore(), provider, blobs)

        with pytest.raises(AcquisitionError) as exc_info:
            await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert not isinstance(exc_info.value, RecordConflictError)
        assert isinstance(exc_info.value, RecordStoreError)
        assert exc_info.value.stage is AcquisitionStage.RECORD


class TestConcurrentAcquisition:
    async def test_concurrent_requests_produce_one_record(
        self,
        use_case: AcquireTrackUseCase,
        records: InMemoryRecordStore,
        provider: FakeConversionProvider,
    ) -> None:
        request = AcquireTrackRequest(user_id="u1", track_reference="t1")

        first, second = await asyncio.gather(use_case.execute(request), use_case.execute(request))

        assert len(records.records) == 1
        assert first.record.id == second.record.id
        assert first.record.storage_key == second.record.storage_key == "u1/t1.audio"
        assert sorted([first.created, second.created]) == [False, True]
        # Both ran the pipeline; the unique key picked the winner
        assert len(provider.convert_calls) == 2


class TestDurationLookup:
    """The catalog duration is optional garnish."""

    async def test_duration_from_catalog(
        self, records: InMemoryRecordStore, provider: FakeConversionProvider, blobs: FakeBlobStore
    ) -> None:
        catalog = AsyncMock(spec=ICatalogClient)
        catalog.get_track.return_value = CatalogTrack(
            id="t1", title="Song", artists=["Artist"], duration_ms=215000
        )
        credentials = AsyncMock()
        credentials.get_usable_credential.return_value = "access"
        use_case = AcquireTrackUseCase(records, provider, blobs, catalog, credentials)

        response = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert response.record.duration_ms == 215000
        catalog.get_track.assert_awaited_once_with("t1", "access")

    async def test_catalog_failure_does_not_block_acquisition(
        self, records: InMemoryRecordStore, provider: FakeConversionProvider, blobs: FakeBlobStore
    ) -> None:
        catalog = AsyncMock(spec=ICatalogClient)
        catalog.get_track.side_effect = httpx.ConnectError("down")
        credentials = AsyncMock()
        credentials.get_usable_credential.return_value = "access"
        use_case = AcquireTrackUseCase(records, provider, blobs, catalog, credentials)

        response = await use_case.execute(AcquireTrackRequest(user_id="u1", track_reference="t1"))

        assert response.created is True
        assert response.record.duration_ms == 0


class TestAcquisitionWithDatabase:
    """Full pipeline against SQLite and the filesystem store."""

    async def test_acquire_writes_file_and_row(
        self,
        database: Database,
        profile_id: str,
        provider: FakeConversionProvider,
        tmp_path: Path,
    ) -> None:
        blob_store = LocalBlobStore(tmp_path / "media", public_base_url="/media")
        request = AcquireTrackRequest(user_id=profile_id, track_reference="t1")

        async with record_store_scope(database) as store:
            first = await AcquireTrackUseCase(store, provider, blob_store).execute(request)
        async with record_store_scope(database) as store:
            second = await AcquireTrackUseCase(store, provider, blob_store).execute(request)

        assert first.created is True
        assert second.created is False
        assert second.record.id == first.record.id
        assert first.record.public_url == f"/media/{profile_id}/t1.audio"
        assert (tmp_path / "media" / profile_id / "t1.audio").read_bytes() == b"ID3-audio"
        assert len(provider.convert_calls) == 1


@pytest.fixture
async def file_database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """SQLite on disk, so every session gets its own connection."""
    db = Database(
        Settings(database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path}/library.db"))
    )
    await db.create_tables()
    yield db
    await db.close()


class TestConcurrentAcquisitionWithDatabase:
    """The unique index, not the use case, decides who wins."""

    async def test_racing_sessions_share_one_row(
        self,
        file_database: Database,
        provider: FakeConversionProvider,
        tmp_path: Path,
    ) -> None:
        blob_store = LocalBlobStore(tmp_path / "media")
        async with file_database.session_scope() as session:
            profile = ProfileModel(spotify_user_id="racer")
            session.add(profile)
            await session.flush()
            user_id = profile.id
        request = AcquireTrackRequest(user_id=user_id, track_reference="t1")

        async def acquire() -> AcquireTrackResponse:
            async with record_store_scope(file_database) as store:
                return await AcquireTrackUseCase(store, provider, blob_store).execute(request)

        first, second = await asyncio.gather(acquire(), acquire())

        async with record_store_scope(file_database) as store:
            stored = await store.list_for_user(user_id)

        assert len(stored) == 1
        assert first.record.id == second.record.id == stored[0].id
        assert sorted([first.created, second.created]) == [False, True]
        assert (tmp_path / "media" / user_id / "t1.audio").read_bytes() == b"ID3-audio"
