"""Object Gateway: the single entry point for reading and writing images.

Flow for writes: validate -> authorize -> backend put -> attach policy.
Flow for reads: authorize -> backend get. A path with no object is denied to
outsiders exactly like a private object.

Callers never learn which backend is active. Backend failures of any kind
leave the gateway as BackendUnavailableError; the only other errors raised
at request time are TooLargeError, UnsupportedTypeError, AccessDeniedError
and ObjectNotFoundError (plus InvalidObjectPathError for a caller-built
write path that escapes the storage root).
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import httpx

from photocat.storage.acl import AccessPolicyEngine, Permission, Visibility
from photocat.storage.backend import ObjectBackend
from photocat.storage.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    InvalidObjectPathError,
    ObjectNotFoundError,
    ObjectStorageError,
    UnsupportedTypeError,
    ValidationError,
)
from photocat.storage.models import ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import Category, ObjectPath
from photocat.storage.validation import ByteSource, UploadValidator, ValidatedUpload

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600

_PASSTHROUGH_ERRORS: tuple[type[ObjectStorageError], ...] = (
    ValidationError,
    AccessDeniedError,
    ObjectNotFoundError,
    BackendUnavailableError,
)


class ObjectGateway:
    """Validates, authorizes and routes object operations to the active backend."""

    def __init__(
        self,
        *,
        backend: ObjectBackend,
        validator: UploadValidator,
        policy_engine: AccessPolicyEngine,
        backend_name: str | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._validator = validator
        self._policies = policy_engine
        self._backend_name = backend_name or backend.backend_name
        self._cache_ttl = cache_ttl_seconds

    @property
    def backend_name(self) -> str:
        """Name of the active backend, for operator diagnostics (storage check)."""
        return self._backend_name

    @property
    def policy_engine(self) -> AccessPolicyEngine:
        """Return the access policy engine."""
        return self._policies

    @property
    def max_upload_bytes(self) -> int:
        """Upload size ceiling."""
        return self._validator.max_upload_bytes

    @contextmanager
    def _backend_errors(self, path: ObjectPath | None, operation: str) -> Iterator[None]:
        """Translate backend failures into BackendUnavailableError."""
        try:
            yield
        except _PASSTHROUGH_ERRORS:
            raise
        except (ObjectStorageError, httpx.HTTPError) as e:
            logger.warning(
                "Storage %s failed: path=%s error=%s",
                operation,
                path.url if path is not None else "-",
                type(e).__name__,
            )
            raise BackendUnavailableError(
                object_path=path.url if path is not None else None
            ) from e

    def _authorize(self, path: ObjectPath, requester: str | None, operation: Permission) -> None:
        with self._backend_errors(path, f"{operation.value} authorization"):
            decision = self._policies.authorize(path, requester, operation)
        if not decision.allow:
            raise AccessDeniedError(object_path=path.url, code=decision.code.value)

    def _store(
        self,
        path: ObjectPath,
        validated: ValidatedUpload,
        requester: str | None,
    ) -> StoredObjectMetadata:
        self._authorize(path, requester, Permission.WRITE)

        with self._backend_errors(path, "put"):
            attached = self._policies.has_attached_policy(path)
            metadata = self._backend.put(path, validated.iter_chunks(), validated.content_type)
            if not attached:
                # requester is non-empty: write authorization passed
                self._policies.attach_policy_for_new_object(path, (requester or "").strip())

        logger.info(
            "Stored object: path=%s size=%d overwrite=%s",
            path.url,
            metadata.size_bytes,
            attached,
        )
        return metadata

    def put(
        self,
        path: ObjectPath,
        declared_mime_type: str | None,
        stream: ByteSource,
        requester: str | None,
        declared_size: int | None = None,
    ) -> StoredObjectMetadata:
        """Store an upload at a caller-chosen path.

        An existing object at path is replaced atomically and keeps its
        access policy.

        Raises:
            TooLargeError: If the upload exceeds the size ceiling.
            UnsupportedTypeError: If the type is not allowed, does not match
                the signature, or does not match the path extension.
            AccessDeniedError: If the requester may not write the path.
            BackendUnavailableError: If the backend fails.
        """
        validated = self._validator.validate(declared_mime_type, stream, declared_size)
        if validated.extension != path.ext:
            raise UnsupportedTypeError(
                f"File type mismatch. Path expects .{path.ext} but upload is "
                f"{validated.content_type}",
                declared_type=path.content_type,
                detected_type=validated.content_type,
                object_path=path.url,
            )
        return self._store(path, validated, requester)

    def create(
        self,
        stream: ByteSource,
        declared_mime_type: str | None,
        declared_size: int | None,
        requester: str | None,
        *,
        category: Category = Category.ITEMS,
        item_id: str | None = None,
        index: int | None = None,
    ) -> StoredObjectMetadata:
        """Store an upload under a path derived from the validated bytes.

        The extension is the one the validator derived from the bytes.
        item_id groups several images of one item (with index); a new id is
        generated when it is omitted.

        Raises:
            InvalidObjectPathError: If item_id or index is malformed.
        """
        validated = self._validator.validate(declared_mime_type, stream, declared_size)
        path = ObjectPath(
            category=category,
            object_id=item_id or str(uuid.uuid4()),
            ext=validated.extension,
            index=index,
        )
        return self._store(path, validated, requester)

    def upload(
        self,
        stream: ByteSource,
        declared_mime_type: str | None,
        declared_size: int | None,
        requester: str | None,
        *,
        category: Category = Category.ITEMS,
        item_id: str | None = None,
        index: int | None = None,
    ) -> str:
        """Store an upload under a fresh path and return its logical path."""
        metadata = self.create(
            stream,
            declared_mime_type,
            declared_size,
            requester,
            category=category,
            item_id=item_id,
            index=index,
        )
        return metadata.path.url

    def get(self, path: ObjectPath, requester: str | None) -> ObjectDownload:
        """Open an object for streaming.

        Authorization runs before the existence check, so a denied requester
        cannot tell whether the object exists.

        Raises:
            AccessDeniedError: If the requester may not read the path.
            ObjectNotFoundError: If no object is stored at path.
            BackendUnavailableError: If the backend fails.
        """
        self._authorize(path, requester, Permission.READ)
        with self._backend_errors(path, "get"):
            try:
                return self._backend.get(path)
            except InvalidObjectPathError as e:
                raise ObjectNotFoundError(object_path=path.url) from e

    def open(self, logical_path: str, requester: str | None) -> ObjectDownload:
        """Parse a logical path string and open it.

        Strings that are not valid object paths read as missing objects.
        """
        try:
            path = ObjectPath.parse(logical_path)
        except InvalidObjectPathError as e:
            raise ObjectNotFoundError() from e
        return self.get(path, requester)

    def exists(self, path: ObjectPath, requester: str | None) -> bool:
        """Return True if an object is stored at path and may be read."""
        self._authorize(path, requester, Permission.READ)
        with self._backend_errors(path, "exists"):
            try:
                return self._backend.exists(path)
            except InvalidObjectPathError:
                return False

    def cache_control(self, path: ObjectPath) -> str:
        """Cache-Control header value for a read of path."""
        with self._backend_errors(path, "policy lookup"):
            policy = self._policies.effective_policy(path)
        is_public = policy is not None and policy.visibility == Visibility.PUBLIC
        return f"{'public' if is_public else 'private'}, max-age={self._cache_ttl}"
