"""Custom exception handlers for FastAPI application.

This module registers global exception handlers that convert domain exceptions
and validation errors into proper HTTP responses with appropriate status codes.

Hey future me - two things the frontend relies on here:
- credential failures carry "reauthorize". Only NoCredentialError sets it to true; a failed
  refresh is transient and must NOT bounce the user back to the Spotify login.
- acquisition failures carry "stage" (convert/transfer/store/...) so the UI can say WHICH
  step of the download broke.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from sonicvault.domain.exceptions import (
    AcquisitionError,
    AuthenticationError,
    ConfigurationError,
    EntityNotFoundException,
    NoCredentialError,
    ProviderNoResultError,
    ProviderUnavailableError,
    RecordStoreError,
    RefreshFailedError,
    StorageWriteFailedError,
    TransferFailedError,
    ValidationException,
)

logger = logging.getLogger(__name__)

# Most specific class first; RecordConflictError never gets here (the use case resolves it)
_ACQUISITION_STATUS: list[tuple[type[AcquisitionError], int]] = [
    (ProviderNoResultError, status.HTTP_404_NOT_FOUND),
    (ProviderUnavailableError, status.HTTP_502_BAD_GATEWAY),
    (TransferFailedError, status.HTTP_502_BAD_GATEWAY),
    (StorageWriteFailedError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (RecordStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def acquisition_status_code(exc: AcquisitionError) -> int:
    """HTTP status for an acquisition failure."""
    for exc_type, code in _ACQUISITION_STATUS:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Hey future me - this helper converts bytes to strings in validation error dicts!
# Pydantic's exc.errors() can include the raw request body as bytes in the 'input' field,
# which JSONResponse can't serialize. We walk the structure and decode any bytes we find.
def _sanitize_validation_errors(
    errors: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Sanitize validation errors by converting bytes to strings."""

    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return value.decode("latin-1")
        elif isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        elif isinstance(value, list | tuple):
            return [_sanitize_value(item) for item in value]
        return value

    return [_sanitize_value(error) for error in errors]


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers for domain and validation exceptions.

    Must run during app setup, before the first request.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(NoCredentialError)
    async def no_credential_handler(
        request: Request, exc: NoCredentialError
    ) -> JSONResponse:
        """No stored credential: 401, user has to authorize again."""
        logger.info(
            "No credential at %s for user %s",
            request.url.path,
            exc.user_id,
            extra={"path": request.url.path, "user_id": exc.user_id},
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": exc.message, "reauthorize": True},
        )

    @app.exception_handler(RefreshFailedError)
    async def refresh_failed_handler(
        request: Request, exc: RefreshFailedError
    ) -> JSONResponse:
        """Refresh failed: 503, retry later, do NOT re-authorize."""
        logger.warning(
            "Credential refresh failed at %s for user %s: %s",
            request.url.path,
            exc.user_id,
            exc.error_code or exc.message,
            extra={"path": request.url.path, "user_id": exc.user_id},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message, "reauthorize": False},
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(AcquisitionError)
    async def acquisition_error_handler(
        request: Request, exc: AcquisitionError
    ) -> JSONResponse:
        """Acquisition failed at some stage; tell the caller which one."""
        code = acquisition_status_code(exc)
        logger.warning(
            "Acquisition failed at %s (stage=%s, track=%s): %s",
            request.url.path,
            exc.stage.value,
            exc.track_reference,
            exc.message,
            extra={
                "path": request.url.path,
                "stage": exc.stage.value,
                "track_id": exc.track_reference,
            },
        )
        return JSONResponse(
            status_code=code,
            content={
                "detail": exc.message,
                "stage": exc.stage.value,
                "track_id": exc.track_reference,
            },
        )

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(
        request: Request, exc: ValidationException
    ) -> JSONResponse:
        """Handle domain validation exceptions with 422 Unprocessable Entity."""
        logger.warning(
            "Validation error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.message},
        )

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        """Handle entity not found exceptions with 404 Not Found."""
        logger.info(
            "Entity not found at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={"path": request.url.path, "entity_type": exc.entity_type},
        )
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic request validation errors with 422."""
        errors = _sanitize_validation_errors(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %d errors",
            request.url.path,
            len(errors),
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle configuration errors with 503 Service Unavailable."""
        logger.error(
            "Configuration error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        """Handle authentication errors with 401 Unauthorized."""
        logger.warning(
            "Authentication error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": exc.message},
        )

    # Hey future me - SQLite answers "database is locked" when a long write holds the lock
    # past the busy timeout. That's worth a retry, so 503 instead of a bare 500.
    @app.exception_handler(OperationalError)
    async def database_operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        """Handle SQLAlchemy OperationalError."""
        error_msg = str(exc).lower()
        if "locked" in error_msg or "busy" in error_msg:
            logger.warning(
                "Database busy at %s",
                request.url.path,
                extra={"path": request.url.path, "error": str(exc)[:200]},
            )
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"detail": "Database busy, please retry."},
                headers={"Retry-After": "3"},
            )

        logger.error(
            "Database error at %s: %s",
            request.url.path,
            str(exc)[:500],
            extra={"path": request.url.path, "error": str(exc)[:500]},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Database error occurred. Please try again."},
        )
