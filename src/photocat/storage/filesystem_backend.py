"""photocat local filesystem object backend.

Objects live under a single root directory, one file per object:
    {root}/{category}/{id}.{ext}
    {root}/{category}/{id}/{index}.{ext}

Writes stream into a hidden temp file in the destination directory and are
moved into place with os.replace, so readers only ever see the previous
object or the complete new one.
"""

from __future__ import annotations

import hashlib
import logging
import os
import uuid
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from photocat.storage.backend import ObjectBackend
from photocat.storage.errors import (
    ObjectNotFoundError,
    PathTraversalError,
    StorageBackendError,
)
from photocat.storage.models import CHUNK_SIZE, ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import ObjectPath
from photocat.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    try:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                return
            yield chunk
    finally:
        handle.close()


class LocalFilesystemBackend(ObjectBackend):
    """Filesystem-based object backend.

    The root is resolved once at construction. Every object path is joined
    from validated components, resolved (following symlinks) and required to
    stay inside the root before any read or write.
    """

    def __init__(self, root: str | Path, *, chunk_size: int = CHUNK_SIZE) -> None:
        """Initialize filesystem storage.

        Args:
            root: Root directory. Created if missing.
            chunk_size: Read chunk size in bytes.

        Raises:
            StorageBackendError: If the root cannot be created.
        """
        root_path = Path(root)
        try:
            root_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageBackendError("Failed to create storage root", cause=e) from e
        self._root = root_path.resolve()
        self._chunk_size = chunk_size
        logger.debug("LocalFilesystemBackend initialized with root=%s", self._root)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "local"

    @property
    def root(self) -> Path:
        """Return the resolved root directory."""
        return self._root

    def _resolve(self, path: ObjectPath) -> Path:
        """Map a logical path to a file inside the root."""
        resolved = self._root.joinpath(*path.segments).resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError as e:
            raise PathTraversalError(
                "Path resolves outside storage root", object_path=path.url
            ) from e
        return resolved

    @traced_storage_operation("put")
    def put(
        self,
        path: ObjectPath,
        chunks: Iterable[bytes],
        content_type: str,
    ) -> StoredObjectMetadata:
        """Stream chunks into place atomically."""
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageBackendError(
                "Failed to create object directory", object_path=path.url, cause=e
            ) from e
        # mkdir may have walked through a symlink created meanwhile
        target = self._resolve(path)

        tmp_file = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        digest = hashlib.sha256()
        size = 0
        try:
            with open(tmp_file, "xb") as f:
                for chunk in chunks:
                    f.write(chunk)
                    digest.update(chunk)
                    size += len(chunk)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, target)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(
                "Failed to write object", object_path=path.url, cause=e
            ) from e
        except BaseException:
            tmp_file.unlink(missing_ok=True)
            raise

        metadata = StoredObjectMetadata(
            path=path,
            content_type=content_type,
            size_bytes=size,
            sha256=digest.hexdigest(),
            created_at=datetime.now(UTC),
        )
        logger.debug("Stored object: path=%s size=%d sha256=%s", path.url, size, metadata.sha256)
        return metadata

    @traced_storage_operation("get")
    def get(self, path: ObjectPath) -> ObjectDownload:
        """Open an object for streaming."""
        target = self._resolve(path)
        try:
            handle = open(target, "rb")  # noqa: SIM115 - closed by the download
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise ObjectNotFoundError(object_path=path.url) from e
        except OSError as e:
            raise StorageBackendError(
                "Failed to open object", object_path=path.url, cause=e
            ) from e

        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as e:
            handle.close()
            raise StorageBackendError(
                "Failed to stat object", object_path=path.url, cause=e
            ) from e

        return ObjectDownload(
            path=path,
            content_type=path.content_type,
            size_bytes=size,
            chunks=_iter_file(handle, self._chunk_size),
            _on_close=handle.close,
        )

    @traced_storage_operation("head")
    def head(self, path: ObjectPath) -> StoredObjectMetadata:
        """Get object metadata from the file system.

        The digest is not persisted, so sha256 is empty.
        """
        target = self._resolve(path)
        try:
            stat = target.stat()
        except (FileNotFoundError, NotADirectoryError) as e:
            raise ObjectNotFoundError(object_path=path.url) from e
        except OSError as e:
            raise StorageBackendError(
                "Failed to stat object", object_path=path.url, cause=e
            ) from e
        if not target.is_file():
            raise ObjectNotFoundError(object_path=path.url)

        return StoredObjectMetadata(
            path=path,
            content_type=path.content_type,
            size_bytes=stat.st_size,
            sha256="",
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        )

    @traced_storage_operation("exists")
    def exists(self, path: ObjectPath) -> bool:
        """Return True if a file is stored at path."""
        return self._resolve(path).is_file()
