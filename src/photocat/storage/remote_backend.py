"""photocat remote object backend.

Talks to a cloud blob store through its JSON API, authorized with a
short-lived token from the storage sidecar:

    GET   {api}/storage/v1/b/{bucket}/o/{name}                 object metadata
    GET   {api}/storage/v1/b/{bucket}/o/{name}?alt=media       object bytes
    POST  {api}/upload/storage/v1/b/{bucket}/o?uploadType=media&name={name}
    PATCH {api}/storage/v1/b/{bucket}/o/{name}                 custom metadata

Object names are {prefix}/{category}/{id}.{ext}. Media uploads are atomic on
the server side: a failed or aborted upload never creates a partial object.
Each upload starts a new generation with empty custom metadata; put carries
the previous metadata over.
"""

from __future__ import annotations

import hashlib
import json
import logging
import tempfile
import time
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from typing import IO, Any
from urllib.parse import quote

import httpx

from photocat.storage.acl import AccessPolicy
from photocat.storage.backend import ObjectBackend
from photocat.storage.errors import ObjectNotFoundError, StorageBackendError
from photocat.storage.models import CHUNK_SIZE, ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import ObjectPath
from photocat.storage.retry import RetryPolicy, send_with_retries
from photocat.storage.sidecar import SidecarCredentialProvider
from photocat.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

SPOOL_MAX_MEMORY = 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 30.0
POLICY_METADATA_KEY = "aclPolicy"
SHA256_METADATA_KEY = "sha256"


def _iter_spool(spool: IO[bytes], chunk_size: int) -> Iterator[bytes]:
    spool.seek(0)
    while True:
        chunk = spool.read(chunk_size)
        if not chunk:
            return
        yield chunk


def _iter_response(response: httpx.Response, chunk_size: int) -> Iterator[bytes]:
    try:
        yield from response.iter_bytes(chunk_size)
    finally:
        response.close()


def _parse_timestamp(raw: Any) -> datetime:
    if not raw:
        return datetime.now(UTC)
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(UTC)


class RemoteSidecarBackend(ObjectBackend):
    """Blob store backend authorized through the credential sidecar.

    Every call fetches a token from the provider (cached there). A 401 from
    the blob store invalidates the token and replays the request once with a
    fresh one. Transient failures are retried per the RetryPolicy.
    """

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str,
        credentials: SidecarCredentialProvider,
        api_base_url: str,
        http_client: httpx.Client | None = None,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = CHUNK_SIZE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._credentials = credentials
        self._api = api_base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS)
        self._retry_policy = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size
        self._sleep = sleep

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "remote"

    @property
    def credentials(self) -> SidecarCredentialProvider:
        """Return the credential provider."""
        return self._credentials

    def close(self) -> None:
        """Close owned HTTP clients."""
        if self._owns_client:
            self._client.close()
        self._credentials.close()

    def object_name(self, path: ObjectPath) -> str:
        """Blob name of an object inside the bucket."""
        if self._prefix:
            return f"{self._prefix}/{path.key}"
        return path.key

    def _object_url(self, path: ObjectPath) -> str:
        name = quote(self.object_name(path), safe="")
        return f"{self._api}/storage/v1/b/{quote(self._bucket, safe='')}/o/{name}"

    def _upload_url(self) -> str:
        return f"{self._api}/upload/storage/v1/b/{quote(self._bucket, safe='')}/o"

    def _authorized(
        self,
        send: Callable[[str], httpx.Response],
        *,
        description: str,
        path: ObjectPath,
    ) -> httpx.Response:
        """Send with a sidecar token, replaying once after a 401."""
        for auth_attempt in range(2):
            token = self._credentials.get_token()
            response = send_with_retries(
                lambda: send(token),
                policy=self._retry_policy,
                description=description,
                object_path=path.url,
                sleep=self._sleep,
            )
            if response.status_code != 401 or auth_attempt == 1:
                return response
            response.close()
            logger.debug("Blob store rejected credential during %s; refreshing", description)
            self._credentials.invalidate(token)
        raise AssertionError("unreachable")

    @staticmethod
    def _headers(token: str, extra: dict[str, str] | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", **(extra or {})}

    def _raise_for_status(
        self,
        response: httpx.Response,
        path: ObjectPath,
        description: str,
        *,
        missing_is_not_found: bool = True,
    ) -> None:
        if response.status_code < 400:
            return
        response.close()
        if response.status_code == 404 and missing_is_not_found:
            raise ObjectNotFoundError(object_path=path.url)
        raise StorageBackendError(
            f"Blob store rejected {description} (HTTP {response.status_code})",
            object_path=path.url,
        )

    def _fetch_metadata(self, path: ObjectPath) -> dict[str, Any] | None:
        """Object resource JSON, or None if the object does not exist."""
        url = self._object_url(path)
        response = self._authorized(
            lambda token: self._client.get(url, headers=self._headers(token)),
            description="metadata lookup",
            path=path,
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path, "metadata lookup")
        try:
            resource: dict[str, Any] = response.json()
        except ValueError as e:
            raise StorageBackendError(
                "Blob store returned malformed metadata", object_path=path.url, cause=e
            ) from e
        return resource

    def _metadata_from_resource(
        self, path: ObjectPath, resource: dict[str, Any]
    ) -> StoredObjectMetadata:
        custom = resource.get("metadata") or {}
        return StoredObjectMetadata(
            path=path,
            content_type=path.content_type,
            size_bytes=int(resource.get("size", 0)),
            sha256=str(custom.get(SHA256_METADATA_KEY, "")),
            created_at=_parse_timestamp(resource.get("updated") or resource.get("timeCreated")),
        )

    @traced_storage_operation("put")
    def put(
        self,
        path: ObjectPath,
        chunks: Iterable[bytes],
        content_type: str,
    ) -> StoredObjectMetadata:
        """Spool the chunks, then upload them in one media request.

        A media upload creates a new generation without custom metadata, so
        the metadata of the object being replaced (its access policy
        included) is read before uploading and written back with the new digest.
        """
        name = self.object_name(path)
        url = self._upload_url()
        digest = hashlib.sha256()
        size = 0

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
            for chunk in chunks:
                spool.write(chunk)
                digest.update(chunk)
                size += len(chunk)
            preserved = self.get_custom_metadata(path) or {}

            def send(token: str) -> httpx.Response:
                return self._client.post(
                    url,
                    params={"uploadType": "media", "name": name},
                    content=_iter_spool(spool, self._chunk_size),
                    headers=self._headers(
                        token, {"Content-Type": content_type, "Content-Length": str(size)}
                    ),
                )

            response = self._authorized(send, description="upload", path=path)
            self._raise_for_status(response, path, "upload", missing_is_not_found=False)

        try:
            resource = response.json()
        except ValueError:
            resource = {}

        sha256 = digest.hexdigest()
        self._patch_metadata(path, {**preserved, SHA256_METADATA_KEY: sha256})
        logger.debug("Uploaded object: path=%s size=%d sha256=%s", path.url, size, sha256)
        return StoredObjectMetadata(
            path=path,
            content_type=content_type,
            size_bytes=size,
            sha256=sha256,
            created_at=_parse_timestamp(resource.get("updated") or resource.get("timeCreated")),
        )

    @traced_storage_operation("get")
    def get(self, path: ObjectPath) -> ObjectDownload:
        """Look up the object, then stream its media."""
        resource = self._fetch_metadata(path)
        if resource is None:
            raise ObjectNotFoundError(object_path=path.url)
        metadata = self._metadata_from_resource(path, resource)

        url = self._object_url(path)

        def send(token: str) -> httpx.Response:
            request = self._client.build_request(
                "GET", url, params={"alt": "media"}, headers=self._headers(token)
            )
            return self._client.send(request, stream=True)

        response = self._authorized(send, description="download", path=path)
        self._raise_for_status(response, path, "download")

        return ObjectDownload(
            path=path,
            content_type=path.content_type,
            size_bytes=metadata.size_bytes,
            chunks=_iter_response(response, self._chunk_size),
            _on_close=response.close,
        )

    @traced_storage_operation("head")
    def head(self, path: ObjectPath) -> StoredObjectMetadata:
        """Get object metadata without retrieving content."""
        resource = self._fetch_metadata(path)
        if resource is None:
            raise ObjectNotFoundError(object_path=path.url)
        return self._metadata_from_resource(path, resource)

    @traced_storage_operation("exists")
    def exists(self, path: ObjectPath) -> bool:
        """Return True if the metadata endpoint knows the object."""
        return self._fetch_metadata(path) is not None

    def get_custom_metadata(self, path: ObjectPath) -> dict[str, str] | None:
        """Custom metadata of an object, or None if the object does not exist."""
        resource = self._fetch_metadata(path)
        if resource is None:
            return None
        return dict(resource.get("metadata") or {})

    def _patch_metadata(self, path: ObjectPath, values: dict[str, str]) -> None:
        url = self._object_url(path)
        response = self._authorized(
            lambda token: self._client.patch(
                url, json={"metadata": values}, headers=self._headers(token)
            ),
            description="metadata update",
            path=path,
        )
        self._raise_for_status(response, path, "metadata update", missing_is_not_found=False)
        response.close()

    def set_custom_metadata(self, path: ObjectPath, values: dict[str, str]) -> None:
        """Merge values into the custom metadata of an existing object."""
        self._patch_metadata(path, values)


class RemoteMetadataPolicyStore:
    """Policies stored in the blob's custom metadata under "aclPolicy".

    The policy travels with the object, so it survives re-deployments and
    stays consistent with the bytes it governs.
    """

    def __init__(self, backend: RemoteSidecarBackend) -> None:
        self._backend = backend

    def get_policy(self, path: ObjectPath) -> AccessPolicy | None:
        """Read the policy from object metadata."""
        custom = self._backend.get_custom_metadata(path)
        if not custom or POLICY_METADATA_KEY not in custom:
            return None
        try:
            return AccessPolicy.from_dict(json.loads(custom[POLICY_METADATA_KEY]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageBackendError(
                "Stored access policy is malformed", object_path=path.url, cause=e
            ) from e

    def set_policy(self, path: ObjectPath, policy: AccessPolicy) -> None:
        """Write the policy into object metadata."""
        self._backend.set_custom_metadata(
            path, {POLICY_METADATA_KEY: json.dumps(policy.to_dict(), sort_keys=True)}
        )
