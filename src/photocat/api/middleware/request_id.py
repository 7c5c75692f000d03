"""Request ID middleware for the photocat API.

Ensures every request has a unique request ID for log correlation.
"""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-Id"
MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware that attaches a request ID to every request.

    Behavior:
    - If the request has a non-empty X-Request-Id header (at most 128
      characters) it is reused.
    - Else a uuid4 is generated.
    - The ID is stored on request.state.request_id and echoed in the
      X-Request-Id response header.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process the request and attach request ID."""
        incoming_request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()

        if incoming_request_id and len(incoming_request_id) <= MAX_REQUEST_ID_LENGTH:
            request_id = incoming_request_id
        else:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        return response
