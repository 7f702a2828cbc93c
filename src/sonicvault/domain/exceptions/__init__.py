"""Domain exceptions."""

from enum import Enum
from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this directly - always use a specific subclass so callers
    # (and the FastAPI exception handlers) can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when request or entity validation fails."""

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)

    Example:
        raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
    """

    pass


class AuthenticationError(DomainException):
    """Caller has no valid session.

    HTTP Status: 401
    """

    pass


# =============================================================================
# Credential lifecycle
# =============================================================================


class NoCredentialError(DomainException):
    """No usable stored credential for the user.

    The caller must send the user through the authorization flow again.
    This is the ONLY credential failure that should trigger re-authorization.

    HTTP Status: 401
    """

    def __init__(self, user_id: str, message: str | None = None) -> None:
        super().__init__(message or f"No stored credential for user {user_id}")
        self.user_id = user_id


class RefreshFailedError(DomainException):
    """A stale credential could not be renewed.

    Hey future me - this is TRANSIENT. The stored credential is left untouched, so the next
    call simply tries again. Never redirect the user to re-auth because of this one!
    error_code/http_status come from the token endpoint when it answered at all.

    HTTP Status: 503
    """

    def __init__(
        self,
        user_id: str,
        message: str = "Credential refresh failed, retry later",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.error_code = error_code
        self.http_status = http_status


class TokenExchangeError(DomainException):
    """The authorization server rejected a token exchange.

    Raised by the Spotify client. error_code is the OAuth error (e.g. "invalid_grant").
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


# =============================================================================
# Track acquisition
# =============================================================================


class AcquisitionStage(str, Enum):
    """Pipeline stage an acquisition failure happened in."""

    LOOKUP = "lookup"
    CONVERT = "convert"
    TRANSFER = "transfer"
    STORE = "store"
    RECORD = "record"


class AcquisitionError(DomainException):
    """Base class for acquisition pipeline failures.

    Every subclass pins the stage so the API can tell the user WHICH external
    step failed. All of these are safe to retry: the whole pipeline re-runs.
    """

    stage: AcquisitionStage = AcquisitionStage.LOOKUP

    def __init__(self, message: str, track_reference: str | None = None) -> None:
        super().__init__(message)
        self.track_reference = track_reference


class ProviderUnavailableError(AcquisitionError):
    """Conversion provider transport error or non-success status."""

    stage = AcquisitionStage.CONVERT

    def __init__(
        self,
        message: str,
        track_reference: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message, track_reference)
        self.http_status = http_status


class ProviderNoResultError(AcquisitionError):
    """Provider answered but reported no usable result."""

    stage = AcquisitionStage.CONVERT


class TransferFailedError(AcquisitionError):
    """Fetching the converted audio payload failed."""

    stage = AcquisitionStage.TRANSFER

    def __init__(
        self,
        message: str,
        track_reference: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message, track_reference)
        self.http_status = http_status


class StorageWriteFailedError(AcquisitionError):
    """Writing the payload to blob storage failed."""

    stage = AcquisitionStage.STORE


class RecordStoreError(AcquisitionError):
    """The record database failed during lookup or record.

    Unlike the other subclasses the stage is per instance: the same database can fail
    before anything external ran (LOOKUP) or after the audio is already stored (RECORD).

    HTTP Status: 503
    """

    def __init__(
        self,
        message: str,
        stage: AcquisitionStage,
        track_reference: str | None = None,
    ) -> None:
        super().__init__(message, track_reference)
        self.stage = stage


class RecordConflictError(AcquisitionError):
    """Unique (user, track) violation on record insert.

    Benign: a concurrent request won the race. The pipeline resolves it by
    re-reading the winning row; it never reaches API callers.
    """

    stage = AcquisitionStage.RECORD

    def __init__(self, user_id: str, track_reference: str) -> None:
        super().__init__(
            f"Acquisition record for {user_id}/{track_reference} already exists",
            track_reference,
        )
        self.user_id = user_id


__all__ = [
    # Base
    "DomainException",
    "EntityNotFoundException",
    "ValidationException",
    "ConfigurationError",
    "AuthenticationError",
    # Credentials
    "NoCredentialError",
    "RefreshFailedError",
    "TokenExchangeError",
    # Acquisition
    "AcquisitionStage",
    "AcquisitionError",
    "ProviderUnavailableError",
    "ProviderNoResultError",
    "TransferFailedError",
    "StorageWriteFailedError",
    "RecordStoreError",
    "RecordConflictError",
]
