"""Blob storage for acquired audio."""

from .blob_store import LocalBlobStore, S3BlobStore, create_blob_store

__all__ = ["LocalBlobStore", "S3BlobStore", "create_blob_store"]
