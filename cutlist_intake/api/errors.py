"""Mapping of application error codes to HTTP responses."""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from cutlist_intake.core.exceptions import (
    APIClientError,
    APITimeoutError,
    AppError,
    ConfigurationError,
    RateLimitExceededError,
    SessionNotFoundError,
    ValidationError,
)
from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

STATUS_BY_CODE = {
    "FILE_TOO_LARGE": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "UNSUPPORTED_FILE_TYPE": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "SPREADSHEET_USE_CLIENT_PARSER": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    "AI_PARSE_FAILED": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def status_for(error: AppError) -> int:
    """HTTP status for an application error."""
    if error.code in STATUS_BY_CODE:
        return STATUS_BY_CODE[error.code]
    if isinstance(error, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, SessionNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ConfigurationError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, RateLimitExceededError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(error, APITimeoutError):
        return status.HTTP_504_GATEWAY_TIMEOUT
    if isinstance(error, APIClientError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(error: AppError) -> HTTPException:
    """Convert an application error into an ``HTTPException``."""
    return HTTPException(
        status_code=status_for(error),
        detail={
            "error": error.code,
            "message": error.message,
            "detail": type(error).__name__,
        },
    )


async def app_error_handler(request: Request, error: AppError) -> JSONResponse:
    """Exception handler for application errors that escape a route."""
    status_code = status_for(error)
    log = LOGGER.error if status_code >= 500 else LOGGER.warning
    log(
        f"Request failed: {error.message}",
        extra={"path": request.url.path, "code": error.code, "status_code": status_code},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": error.code, "message": error.message, "detail": type(error).__name__},
    )
