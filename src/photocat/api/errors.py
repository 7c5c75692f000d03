"""photocat API error handling.

Global exception handlers:
- ObjectStorageError: storage errors mapped to their HTTP status and code
- HTTPException: FastAPI/Starlette HTTP exceptions
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from photocat.api.error_model import code_for_status, error_response
from photocat.storage.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    InvalidObjectPathError,
    ObjectNotFoundError,
    ObjectStorageError,
    TooLargeError,
    UnsupportedTypeError,
)

logger = logging.getLogger(__name__)


# Checked in order; subclasses before their bases.
STORAGE_ERROR_STATUS: tuple[tuple[type[ObjectStorageError], int, str], ...] = (
    (TooLargeError, 413, "FILE_TOO_LARGE"),
    (UnsupportedTypeError, 415, "UNSUPPORTED_MEDIA_TYPE"),
    (AccessDeniedError, 403, "ACCESS_DENIED"),
    (ObjectNotFoundError, 404, "NOT_FOUND"),
    (InvalidObjectPathError, 400, "INVALID_OBJECT_PATH"),
    (BackendUnavailableError, 503, "STORAGE_UNAVAILABLE"),
)


def _storage_error_details(exc: ObjectStorageError) -> dict[str, Any] | None:
    if isinstance(exc, TooLargeError) and exc.max_bytes is not None:
        return {"max_bytes": exc.max_bytes}
    if isinstance(exc, UnsupportedTypeError):
        details = {"declared_type": exc.declared_type, "detected_type": exc.detected_type}
        return {k: v for k, v in details.items() if v} or None
    return None


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for ObjectStorageError.

    Any storage error without an explicit mapping is reported as storage
    unavailable; backend internals never reach the client.
    """
    assert isinstance(exc, ObjectStorageError)

    for error_type, http_status, code in STORAGE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return error_response(
                request, http_status, code, exc.message, _storage_error_details(exc)
            )

    logger.warning("Unmapped storage error: %s", type(exc).__name__)
    return error_response(request, 503, "STORAGE_UNAVAILABLE", "Object storage is unavailable")


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for HTTPException."""
    assert isinstance(exc, HTTPException)

    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"
    return error_response(request, exc.status_code, code_for_status(exc.status_code), message)


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for RequestValidationError.

    Does not expose raw validation internals.
    """
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return error_response(
        request,
        422,
        "REQUEST_VALIDATION_FAILED",
        "Request validation failed",
        {"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler for unhandled exceptions.

    Fails closed: returns 500 with safe generic message and logs the
    exception.
    """
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return error_response(request, 500, "INTERNAL_ERROR", "An internal error occurred")
