"""photocat object backend interface definition.

Provides the ObjectBackend base class that every storage backend implements.
Backends see validated ObjectPath values and byte chunks only; validation
and authorization happen in the gateway before a backend is called.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from photocat.storage.models import ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import ObjectPath


class ObjectBackend(ABC):
    """Abstract base class for object storage backends.

    All implementations must provide:
    - Streaming writes that never expose a partially written object
    - Streaming reads in bounded chunks
    - Read-after-write consistency per path
    - Safe attribute emission for observability

    Implementations:
    - LocalFilesystemBackend: sandboxed local directory
    - RemoteSidecarBackend: cloud blob store behind a credential sidecar
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability.

        Returns:
            Backend name string ("local" or "remote").
        """
        ...

    @abstractmethod
    def put(
        self,
        path: ObjectPath,
        chunks: Iterable[bytes],
        content_type: str,
    ) -> StoredObjectMetadata:
        """Store an object, replacing any existing object at path.

        Args:
            path: Validated logical path.
            chunks: Content in bounded chunks. May raise a ValidationError
                mid-stream (e.g. TooLargeError), which must propagate unchanged.
            content_type: MIME type of the content.

        Returns:
            Metadata for the stored object.

        Raises:
            PathTraversalError: If the path resolves outside the sandbox.
            StorageBackendError: If the backend cannot complete the write.
        """
        ...

    @abstractmethod
    def get(self, path: ObjectPath) -> ObjectDownload:
        """Open an object for streaming.

        Raises:
            ObjectNotFoundError: If no object is stored at path.
            StorageBackendError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    def head(self, path: ObjectPath) -> StoredObjectMetadata:
        """Get object metadata without retrieving content.

        Raises:
            ObjectNotFoundError: If no object is stored at path.
            StorageBackendError: If the backend cannot complete the operation.
        """
        ...

    @abstractmethod
    def exists(self, path: ObjectPath) -> bool:
        """Return True if an object is stored at path.

        Raises:
            StorageBackendError: If the backend cannot answer.
        """
        ...
