"""Custom exceptions and error handling for the QR access subsystem."""
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MedichainError(Exception):
    """Base exception for MediChain application errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Dict[str, Any] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidAccessLevel(MedichainError):
    """Raised when an access level is not one of emergency, basic, full."""

    def __init__(self, message: str = "Invalid access level", details: Dict[str, Any] = None):
        super().__init__(message, details)


class InvalidDuration(MedichainError):
    """Raised when a grant duration falls outside the allowed window."""

    def __init__(self, message: str = "Expiration must be between 5 minutes and 24 hours", details: Dict[str, Any] = None):
        super().__init__(message, details)


class InvalidTokenFormat(MedichainError):
    """Raised when a token is empty after sanitization."""

    def __init__(self, message: str = "Invalid token format", details: Dict[str, Any] = None):
        super().__init__(message, details)


class GrantNotFound(MedichainError):
    """Raised when a token or grant is absent or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Invalid or expired QR code", details: Dict[str, Any] = None):
        super().__init__(message, details)


class GrantExpired(MedichainError):
    """Raised when a grant exists but its expiry has passed."""

    def __init__(self, message: str = "QR code has expired", details: Dict[str, Any] = None):
        super().__init__(message, details)


class AccessLevelMismatch(MedichainError):
    """Raised when the requested tier differs from the tier stored on the grant."""

    def __init__(self, message: str = "Access level mismatch", details: Dict[str, Any] = None):
        super().__init__(message, details)


class Unauthenticated(MedichainError):
    """Raised when an owner-scoped operation has no owner identity."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated", details: Dict[str, Any] = None):
        super().__init__(message, details)


def create_error_response(error: MedichainError) -> JSONResponse:
    """
    Create a standardized error response.

    Only the public message is returned; details stay in the logs.
    """
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, Unauthenticated) else None
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP responses for the given app."""

    @app.exception_handler(MedichainError)
    async def _handle_medichain_error(request: Request, exc: MedichainError) -> JSONResponse:
        logger.info(
            "Request to %s rejected: %s (%s)", request.url.path, type(exc).__name__, exc.message,
        )
        return create_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
        logger.info("Request to %s failed validation: %s", request.url.path, fields)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid request", "fields": fields},
        )

    @app.exception_handler(Exception)
    async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
