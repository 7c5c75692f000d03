"""photocat object storage data models."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from types import TracebackType

from photocat.storage.paths import ObjectPath

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class StoredObjectMetadata:
    """Metadata for a stored object.

    Attributes:
        path: Logical path of the object.
        content_type: MIME type derived from the path extension.
        size_bytes: Size of the object content in bytes.
        sha256: SHA256 of the content (hex), computed while streaming.
            Empty when the backend does not report it.
        created_at: Timestamp when the bytes were written.
    """

    path: ObjectPath
    content_type: str
    size_bytes: int
    sha256: str
    created_at: datetime

    def to_dict(self) -> dict[str, str | int]:
        """Convert metadata to dictionary for JSON serialization."""
        return {
            "path": self.path.url,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "sha256": self.sha256,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ObjectDownload:
    """Streaming handle for a stored object.

    The chunks iterator holds an open file or HTTP response; callers must
    exhaust it or call close(). Usable as a context manager.

    Attributes:
        path: Logical path of the object.
        content_type: MIME type derived from the path extension.
        size_bytes: Size of the object in bytes.
        chunks: Iterator over the object content.
    """

    path: ObjectPath
    content_type: str
    size_bytes: int
    chunks: Iterator[bytes]
    _on_close: Callable[[], None] | None = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    def __iter__(self) -> Iterator[bytes]:
        return self.chunks

    def read_all(self) -> bytes:
        """Read the remaining content into memory. Intended for tests and small objects."""
        try:
            return b"".join(self.chunks)
        finally:
            self.close()

    def close(self) -> None:
        """Release the underlying file or response."""
        if self._closed:
            return
        self._closed = True
        close_chunks = getattr(self.chunks, "close", None)
        if callable(close_chunks):
            close_chunks()
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> ObjectDownload:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
