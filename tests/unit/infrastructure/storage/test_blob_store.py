"""Tests for the blob store backends."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from sonicvault.config import StorageSettings
from sonicvault.domain.exceptions import ConfigurationError, StorageWriteFailedError
from sonicvault.infrastructure.storage import LocalBlobStore, S3BlobStore, create_blob_store


class TestLocalBlobStore:
    """Tests for the filesystem backend."""

    async def test_put_writes_file(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path, public_base_url="/media/")

        key = await store.put("u1/t1.audio", b"audio")

        assert key == "u1/t1.audio"
        assert (tmp_path / "u1" / "t1.audio").read_bytes() == b"audio"
        assert store.public_url(key) == "/media/u1/t1.audio"

    async def test_put_overwrites_existing(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        await store.put("u1/t1.audio", b"first")
        await store.put("u1/t1.audio", b"second")

        assert (tmp_path / "u1" / "t1.audio").read_bytes() == b"second"
        # No temp files left behind
        assert sorted(p.name for p in (tmp_path / "u1").iterdir()) == ["t1.audio"]

    async def test_concurrent_puts_to_same_key(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path)

        await asyncio.gather(*(store.put("u1/t1.audio", b"audio") for _ in range(5)))

        assert (tmp_path / "u1" / "t1.audio").read_bytes() == b"audio"
        assert sorted(p.name for p in (tmp_path / "u1").iterdir()) == ["t1.audio"]

    async def test_rejects_key_outside_root(self, tmp_path: Path) -> None:
        store = LocalBlobStore(tmp_path / "media")

        with pytest.raises(StorageWriteFailedError):
            await store.put("../escape.audio", b"audio")

        assert not (tmp_path / "escape.audio").exists()

    async def test_os_error_becomes_storage_error(self, tmp_path: Path) -> None:
        # Root is a regular file, so the user directory can't be created
        root = tmp_path / "not-a-dir"
        root.write_bytes(b"")
        store = LocalBlobStore(root)

        with pytest.raises(StorageWriteFailedError) as exc_info:
            await store.put("u1/t1.audio", b"audio")

        assert exc_info.value.stage.value == "store"


@pytest.fixture
def s3_settings() -> StorageSettings:
    return StorageSettings(
        backend="s3",
        s3_bucket="music",
        s3_access_key_id="key",
        s3_secret_access_key="secret",
        public_base_url="https://cdn.example.com",
    )


class TestS3BlobStore:
    """Tests for the S3 backend with a mocked boto3 client."""

    async def test_put_uploads_with_content_type(self, s3_settings: StorageSettings) -> None:
        client = MagicMock()
        store = S3BlobStore(s3_settings, client=client)

        key = await store.put("u1/t1.audio", b"audio", "audio/mpeg")

        assert key == "u1/t1.audio"
        client.upload_fileobj.assert_called_once()
        fileobj, bucket, uploaded_key = client.upload_fileobj.call_args.args
        assert fileobj.getvalue() == b"audio"
        assert bucket == "music"
        assert uploaded_key == "u1/t1.audio"
        assert client.upload_fileobj.call_args.kwargs["ExtraArgs"] == {"ContentType": "audio/mpeg"}
        assert store.public_url(key) == "https://cdn.example.com/u1/t1.audio"

    @pytest.mark.parametrize(
        "error",
        [
            ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"),
            EndpointConnectionError(endpoint_url="https://s3.example.com"),
        ],
    )
    async def test_upload_failure(self, s3_settings: StorageSettings, error: Exception) -> None:
        client = MagicMock()
        client.upload_fileobj.side_effect = error
        store = S3BlobStore(s3_settings, client=client)

        with pytest.raises(StorageWriteFailedError):
            await store.put("u1/t1.audio", b"audio")

    async def test_missing_credentials(self) -> None:
        store = S3BlobStore(StorageSettings(backend="s3"))

        with pytest.raises(ConfigurationError):
            await store.put("u1/t1.audio", b"audio")


def test_create_blob_store_picks_backend(tmp_path: Path, s3_settings: StorageSettings) -> None:
    assert isinstance(create_blob_store(s3_settings), S3BlobStore)

    local = create_blob_store(StorageSettings(local_path=tmp_path))
    assert isinstance(local, LocalBlobStore)
    assert local.public_url("u/t.audio") == "/media/u/t.audio"
