"""Infrastructure persistence layer."""

from .database import Database
from .models import Base, ProfileModel, SongModel
from .repositories import (
    AcquisitionRecordRepository,
    CredentialRepository,
    credential_store_scope,
    record_store_scope,
)

__all__ = [
    # Database
    "Database",
    "Base",
    # Models
    "ProfileModel",
    "SongModel",
    # Repositories
    "AcquisitionRecordRepository",
    "CredentialRepository",
    "credential_store_scope",
    "record_store_scope",
]
