"""Upload validation: size ceiling and magic-byte sniffing.

The declared MIME type is caller-supplied metadata; the leading bytes of the
payload decide what the upload actually is. Both must agree, and the
validator (not the caller) picks the extension used in the object path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import IO, Final

from photocat.storage.errors import TooLargeError, UnsupportedTypeError
from photocat.storage.models import CHUNK_SIZE

logger = logging.getLogger(__name__)

SNIFF_LENGTH: Final[int] = 12

MIME_EXTENSIONS: Final[dict[str, str]] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

_MIME_ALIASES: Final[dict[str, str]] = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}

ByteSource = IO[bytes] | Iterable[bytes]


def sniff_mime_type(head: bytes) -> str | None:
    """Detect the image type from leading bytes.

    Supported signatures:
    - JPEG: FF D8 FF
    - PNG: 89 50 4E 47
    - WebP: "RIFF" at 0..3 and "WEBP" at 8..11

    Returns:
        MIME type string, or None if fewer than 12 bytes or not recognized.
    """
    if len(head) < SNIFF_LENGTH:
        return None
    if head[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if head[:4] == b"\x89PNG":
        return "image/png"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


def normalize_mime_type(declared: str | None) -> str:
    """Lower-case a declared MIME type, drop parameters and resolve aliases."""
    value = (declared or "").split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(value, value)


def _iter_source(source: ByteSource, chunk_size: int) -> Iterator[bytes]:
    read = getattr(source, "read", None)
    if callable(read):
        while True:
            chunk = read(chunk_size)
            if not chunk:
                return
            yield chunk
    else:
        for chunk in source:  # type: ignore[union-attr]
            if chunk:
                yield bytes(chunk)


class ValidatedUpload:
    """A sniffed upload, ready to be streamed into a backend.

    iter_chunks() replays the sniffed head, then the rest of the source in
    bounded chunks, and raises TooLargeError as soon as the running total
    passes the ceiling. Single use.
    """

    def __init__(
        self,
        *,
        content_type: str,
        extension: str,
        head: bytes,
        rest: Iterator[bytes],
        max_bytes: int,
    ) -> None:
        self.content_type = content_type
        self.extension = extension
        self.max_bytes = max_bytes
        self._head = head
        self._rest = rest
        self._consumed = False
        self.bytes_read = 0

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield the upload content, enforcing the size ceiling."""
        if self._consumed:
            raise RuntimeError("ValidatedUpload content can only be consumed once")
        self._consumed = True
        return self._generate()

    def _generate(self) -> Iterator[bytes]:
        pending = [self._head] if self._head else []
        for chunk in _chain(pending, self._rest):
            self.bytes_read += len(chunk)
            if self.bytes_read > self.max_bytes:
                raise TooLargeError(max_bytes=self.max_bytes)
            yield chunk


def _chain(first: list[bytes], rest: Iterator[bytes]) -> Iterator[bytes]:
    yield from first
    yield from rest


class UploadValidator:
    """Validates declared type, size and signature of uploads."""

    def __init__(self, max_upload_bytes: int, *, chunk_size: int = CHUNK_SIZE) -> None:
        self.max_upload_bytes = max_upload_bytes
        self._chunk_size = chunk_size

    def validate(
        self,
        declared_mime_type: str | None,
        byte_source: ByteSource,
        declared_size: int | None = None,
    ) -> ValidatedUpload:
        """Validate an upload before any byte reaches a backend.

        Args:
            declared_mime_type: Content type claimed by the caller.
            byte_source: Binary file-like object or iterable of byte chunks.
            declared_size: Size claimed by the caller, if known.

        Returns:
            ValidatedUpload with the canonical extension.

        Raises:
            TooLargeError: If declared_size (or the sniffed head) exceeds the ceiling.
            UnsupportedTypeError: If the declared type is not allowed, the
                signature is unknown, or the two disagree.
        """
        declared = normalize_mime_type(declared_mime_type)
        if declared not in MIME_EXTENSIONS:
            raise UnsupportedTypeError(declared_type=declared_mime_type)

        if declared_size is not None and declared_size > self.max_upload_bytes:
            raise TooLargeError(max_bytes=self.max_upload_bytes)

        chunks = _iter_source(byte_source, self._chunk_size)
        head = b""
        for chunk in chunks:
            head += chunk
            if len(head) >= SNIFF_LENGTH:
                break
        if len(head) > self.max_upload_bytes:
            raise TooLargeError(max_bytes=self.max_upload_bytes)

        detected = sniff_mime_type(head)
        if detected is None:
            raise UnsupportedTypeError(
                "Unable to verify file type. File may be corrupted or invalid",
                declared_type=declared,
            )
        if detected != declared:
            raise UnsupportedTypeError(
                f"File type mismatch. Declared as {declared} but detected as {detected}",
                declared_type=declared,
                detected_type=detected,
            )

        logger.debug("Upload sniffed as %s", detected)
        return ValidatedUpload(
            content_type=detected,
            extension=MIME_EXTENSIONS[detected],
            head=head,
            rest=chunks,
            max_bytes=self.max_upload_bytes,
        )
