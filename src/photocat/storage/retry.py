"""Bounded retries for remote storage calls.

Transient failures are connection errors, timeouts, protocol errors and
HTTP 5xx responses. Everything else (4xx, validation errors) is returned or
raised on the first attempt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from photocat.storage.errors import TransientBackendError

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound of any single delay, in seconds.
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the zero-based attempt number."""
        return float(min(self.max_delay, self.base_delay * (2**attempt)))


def is_transient_status(status_code: int) -> bool:
    """Server-side failures are worth another attempt."""
    return status_code >= 500


def send_with_retries(
    send: Callable[[], httpx.Response],
    *,
    policy: RetryPolicy,
    description: str,
    object_path: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """Call send() until it yields a non-5xx response or the budget runs out.

    Args:
        send: Issues one request. Must be safe to call repeatedly.
        policy: Retry budget and backoff.
        description: Short operation name for logs.
        object_path: Logical path for error context.
        sleep: Injected for tests.

    Returns:
        The first response with a status below 500.

    Raises:
        TransientBackendError: If every attempt failed transiently.
    """
    last_error: BaseException | None = None

    for attempt in range(policy.max_attempts):
        try:
            response = send()
        except TRANSIENT_EXCEPTIONS as exc:
            last_error = exc
            logger.warning(
                "Storage %s failed: %s (attempt %d/%d)",
                description,
                type(exc).__name__,
                attempt + 1,
                policy.max_attempts,
            )
        else:
            if not is_transient_status(response.status_code):
                return response
            response.close()
            last_error = None
            logger.warning(
                "Storage %s server error %d (attempt %d/%d)",
                description,
                response.status_code,
                attempt + 1,
                policy.max_attempts,
            )

        if attempt < policy.max_attempts - 1:
            sleep(policy.delay_for(attempt))

    raise TransientBackendError(
        f"Storage {description} failed after {policy.max_attempts} attempts",
        object_path=object_path,
        cause=last_error,
        attempts=policy.max_attempts,
    ) from last_error
