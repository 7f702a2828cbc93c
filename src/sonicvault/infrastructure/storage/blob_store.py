"""Blob storage backends for acquired audio.

Two backends, picked by STORAGE_BACKEND:
- local: files under STORAGE_LOCAL_PATH, served by the app's /media static mount
- s3: any S3-compatible bucket (AWS, Cloudflare R2, MinIO) with a public base URL

Both overwrite an existing object at the same key, so re-running a store step for the
same (user, track) is harmless.
"""

import asyncio
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from sonicvault.config import StorageSettings
from sonicvault.domain.exceptions import ConfigurationError, StorageWriteFailedError
from sonicvault.domain.ports import IBlobStore

logger = logging.getLogger(__name__)


class LocalBlobStore(IBlobStore):
    """Filesystem blob store."""

    def __init__(self, root: Path, public_base_url: str = "/media") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        # Keys are "{user_id}/{track_id}.audio"; anything climbing out of root is refused
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageWriteFailedError(f"Refusing storage key outside root: {key!r}")
        return path

    # Hey future me - write to a temp file in the same directory, then os.replace(). Readers of
    # the /media mount never see a half-written MP3 and an existing file is swapped atomically.
    def _write(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name per write: two requests storing the same key must not share one
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as tmp_file:
                tmp_file.write(data)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as e:
            raise StorageWriteFailedError(f"Could not write {key}: {e}") from e
        logger.debug("Stored %d bytes at %s (%s)", len(data), key, content_type)
        return key

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


class S3BlobStore(IBlobStore):
    """S3-compatible bucket blob store (boto3)."""

    def __init__(self, settings: StorageSettings, client: Any | None = None) -> None:
        self.settings = settings
        self.bucket = settings.s3_bucket
        self.public_base_url = settings.public_base_url.rstrip("/")
        self._client = client

    # boto3 clients are thread-safe, so one client is shared by all to_thread() uploads
    def _get_client(self) -> Any:
        if self._client is None:
            if not self.settings.s3_access_key_id or not self.settings.s3_secret_access_key:
                raise ConfigurationError(
                    "STORAGE_S3_ACCESS_KEY_ID / STORAGE_S3_SECRET_ACCESS_KEY are not configured"
                )
            self._client = boto3.client(
                "s3",
                endpoint_url=self.settings.s3_endpoint_url,
                aws_access_key_id=self.settings.s3_access_key_id,
                aws_secret_access_key=self.settings.s3_secret_access_key,
                region_name=self.settings.s3_region,
                config=Config(
                    signature_version="s3v4",
                    max_pool_connections=20,
                    connect_timeout=5,
                    read_timeout=60,
                    retries={"max_attempts": 3},
                ),
            )
        return self._client

    async def put(self, key: str, data: bytes, content_type: str = "audio/mpeg") -> str:
        client = self._get_client()
        try:
            await asyncio.to_thread(
                client.upload_fileobj,
                io.BytesIO(data),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageWriteFailedError(f"Upload of {key} failed: {e}") from e
        logger.debug("Uploaded %d bytes to s3://%s/%s", len(data), self.bucket, key)
        return key

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


def create_blob_store(settings: StorageSettings) -> IBlobStore:
    """Build the configured blob store backend."""
    if settings.backend == "s3":
        return S3BlobStore(settings)
    return LocalBlobStore(settings.local_path, settings.public_base_url)
