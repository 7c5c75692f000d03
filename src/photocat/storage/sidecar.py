"""Short-lived credentials from the storage sidecar.

The sidecar is a local HTTP service that brokers access to the blob store:

    GET {endpoint}/credential
    200 {"access_token": "...", "expires_in": 3600}
     or {"access_token": "...", "expires_at": 1767225600 | "2026-01-01T00:00:00Z"}

Tokens are cached until they are within refresh_skew_seconds of expiry.
Refresh is single-flight: while one thread refreshes, the others wait on
the lock and reuse its outcome instead of issuing their own request. A
failed refresh is raised to every caller that waited on it; the next call
after that starts a new attempt.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from photocat.storage.errors import StorageBackendError
from photocat.storage.retry import RetryPolicy, send_with_retries

logger = logging.getLogger(__name__)

CREDENTIAL_ROUTE = "/credential"
DEFAULT_REFRESH_SKEW_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class SidecarCredential:
    """Access token and its absolute expiry (epoch seconds)."""

    access_token: str = field(repr=False)
    expires_at: float


def _parse_expiry(payload: dict[str, Any], now: float) -> float:
    if "expires_in" in payload:
        return now + float(payload["expires_in"])
    raw = payload["expires_at"]
    if isinstance(raw, int | float):
        return float(raw)
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).timestamp()


class SidecarCredentialProvider:
    """Caches and refreshes the sidecar credential."""

    def __init__(
        self,
        endpoint: str,
        http_client: httpx.Client | None = None,
        *,
        refresh_skew_seconds: float = DEFAULT_REFRESH_SKEW_SECONDS,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS)
        self._refresh_skew = refresh_skew_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._credential: SidecarCredential | None = None
        # bumped on every finished refresh attempt, success or failure
        self._generation = 0
        self._failure: StorageBackendError | None = None
        self.refresh_count = 0

    def _is_fresh(self, credential: SidecarCredential | None) -> bool:
        if credential is None:
            return False
        return credential.expires_at - self._refresh_skew > self._clock()

    def get_token(self) -> str:
        """Return a valid access token, refreshing it when needed.

        Raises:
            TransientBackendError: If the sidecar stays unreachable.
            StorageBackendError: If the sidecar rejects the request or
                returns a malformed credential.
        """
        credential = self._credential
        if self._is_fresh(credential):
            return credential.access_token  # type: ignore[union-attr]

        seen = self._generation
        with self._lock:
            if self._generation != seen and self._failure is not None:
                raise self._failure
            credential = self._credential
            if self._is_fresh(credential):
                return credential.access_token  # type: ignore[union-attr]
            try:
                credential = self._fetch()
            except StorageBackendError as e:
                self._failure = e
                self._generation += 1
                raise
            self._credential = credential
            self._failure = None
            self._generation += 1
            self.refresh_count += 1

        return credential.access_token

    def invalidate(self, token: str | None = None) -> None:
        """Drop the cached credential after the blob store rejected it.

        When token is given, the cache is only dropped if it still holds
        that token, so a rejection racing with a refresh does not discard
        the new credential.
        """
        with self._lock:
            current = self._credential
            if current is None:
                return
            if token is not None and current.access_token != token:
                return
            self._credential = None
        logger.debug("Sidecar credential invalidated")

    def check_available(self) -> None:
        """Fetch a credential once to prove the sidecar answers."""
        self.get_token()

    def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            self._client.close()

    def _fetch(self) -> SidecarCredential:
        url = f"{self._endpoint}{CREDENTIAL_ROUTE}"
        response = send_with_retries(
            lambda: self._client.get(url),
            policy=self._retry_policy,
            description="credential refresh",
            sleep=self._sleep,
        )
        if response.status_code != 200:
            raise StorageBackendError(
                f"Credential sidecar returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
            token = str(payload["access_token"])
            expires_at = _parse_expiry(payload, self._clock())
        except (ValueError, KeyError, TypeError) as e:
            raise StorageBackendError(
                "Credential sidecar returned a malformed response", cause=e
            ) from e
        if not token:
            raise StorageBackendError("Credential sidecar returned an empty token")

        logger.debug("Sidecar credential refreshed, expires_at=%s", expires_at)
        return SidecarCredential(access_token=token, expires_at=expires_at)
