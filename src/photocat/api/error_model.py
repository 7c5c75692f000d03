"""Error envelope of the photocat API.

Every non-2xx response carries the same JSON body:

    {"code": "FILE_TOO_LARGE", "message": "...", "details": {...}, "request_id": "..."}

ErrorResponse is both the body builder and the OpenAPI schema advertised for
the object routes (see OBJECT_ERROR_RESPONSES).
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from photocat.api.middleware.request_id import REQUEST_ID_HEADER


class ErrorResponse(BaseModel):
    """Error envelope schema.

    Attributes:
        code: Machine-readable error code, e.g. "ACCESS_DENIED".
        message: Human-readable message. Never names backend internals.
        details: Optional safe context such as {"max_bytes": 10485760}.
        request_id: Correlation id, echoed in the X-Request-Id header.
    """

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str


# Fallback codes for HTTP errors raised without a storage error behind them.
STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "FILE_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "UNPROCESSABLE_ENTITY",
    500: "INTERNAL_ERROR",
    503: "STORAGE_UNAVAILABLE",
}


def _documented(*statuses: int) -> dict[int | str, dict[str, Any]]:
    return {
        status: {"model": ErrorResponse, "description": STATUS_CODES[status]}
        for status in statuses
    }


UPLOAD_ERROR_RESPONSES = _documented(400, 403, 404, 413, 415, 422, 503)
OBJECT_ERROR_RESPONSES = _documented(403, 404, 503)


def code_for_status(status_code: int) -> str:
    """Envelope code for a bare HTTP status, "ERROR" when unmapped."""
    return STATUS_CODES.get(status_code, "ERROR")


def resolve_request_id(request: Request) -> str:
    """Request id set by RequestIdMiddleware.

    Errors raised outside the middleware (it has not run yet) fall back to
    the incoming header, then to a fresh uuid4.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id is not None:
        return str(request_id)
    return request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


def error_response(
    request: Request,
    http_status: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render the envelope and set X-Request-Id on the response."""
    envelope = ErrorResponse(
        code=code,
        message=message,
        details=details,
        request_id=resolve_request_id(request),
    )
    return JSONResponse(
        status_code=http_status,
        content=envelope.model_dump(),
        headers={REQUEST_ID_HEADER: envelope.request_id},
    )
