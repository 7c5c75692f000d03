"""photocat object storage error types.

Taxonomy:
- ValidationError: client-caused, never retried (TooLarge, UnsupportedType,
  invalid or traversal paths).
- AccessDeniedError: policy denies the operation. Same message whether the
  object exists or not.
- ObjectNotFoundError: path has no object.
- TransientBackendError: network/credential failure after the retry budget.
- StorageBackendError: non-transient backend failure (disk, 4xx from the blob API).
- BackendUnavailableError: the Gateway's normalized form of any backend failure.
- ConfigurationError: fatal, raised at startup only.

Messages never carry filesystem paths, bucket names or credentials; the
logical object path is the only identifier attached.
"""

from __future__ import annotations


class ObjectStorageError(Exception):
    """Base exception for object storage operations.

    Attributes:
        message: Human-readable error message.
        object_path: Logical object path associated with the operation (if any).
    """

    def __init__(self, message: str, *, object_path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.object_path = object_path

    def __str__(self) -> str:
        if self.object_path:
            return f"{self.message} path={self.object_path}"
        return self.message


class ValidationError(ObjectStorageError):
    """Raised when an upload or path is rejected before reaching a backend."""


class TooLargeError(ValidationError):
    """Raised when the declared or actual payload size exceeds the ceiling."""

    def __init__(
        self,
        message: str = "Upload exceeds the maximum allowed size",
        *,
        max_bytes: int | None = None,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)
        self.max_bytes = max_bytes


class UnsupportedTypeError(ValidationError):
    """Raised when the declared type is not allowed or does not match the sniffed bytes."""

    def __init__(
        self,
        message: str = "Only JPEG, PNG, and WebP images are supported",
        *,
        declared_type: str | None = None,
        detected_type: str | None = None,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)
        self.declared_type = declared_type
        self.detected_type = detected_type


class InvalidObjectPathError(ValidationError):
    """Raised when a logical object path does not match the expected shape."""

    def __init__(
        self,
        message: str = "Invalid object path",
        *,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)


class PathTraversalError(InvalidObjectPathError):
    """Raised when a path would resolve outside the storage sandbox.

    Covers "..", absolute paths, backslashes, null bytes and symlinks that
    escape the root directory.
    """

    def __init__(
        self,
        message: str = "Invalid path: path traversal detected",
        *,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)


class AccessDeniedError(ObjectStorageError):
    """Raised when the access policy denies the requested operation."""

    def __init__(
        self,
        message: str = "Access denied",
        *,
        object_path: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)
        self.code = code


class ObjectNotFoundError(ObjectStorageError):
    """Raised when no object is stored at the path."""

    def __init__(
        self,
        message: str = "Object not found",
        *,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)


class StorageBackendError(ObjectStorageError):
    """Raised when the storage backend cannot complete an operation.

    Indicates the backend itself failed (disk full, permission denied,
    rejected request) rather than a logical error like object not found.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        object_path: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)
        self.cause = cause


class TransientBackendError(StorageBackendError):
    """Raised when a retryable backend failure persists past the retry budget."""

    def __init__(
        self,
        message: str = "Storage backend temporarily unavailable",
        *,
        object_path: str | None = None,
        cause: BaseException | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, object_path=object_path, cause=cause)
        self.attempts = attempts


class BackendUnavailableError(ObjectStorageError):
    """Gateway-level error for any backend failure.

    The only backend failure kind that crosses the Gateway boundary.
    """

    def __init__(
        self,
        message: str = "Object storage is unavailable",
        *,
        object_path: str | None = None,
    ) -> None:
        super().__init__(message, object_path=object_path)


class ConfigurationError(ObjectStorageError):
    """Raised at startup when storage configuration is contradictory or unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
