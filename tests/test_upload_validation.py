"""Tests for the upload validator.

- Signature enforcement: the sniffed type must match the declared type
- Size ceiling: declared size, actual bytes, exact-ceiling acceptance
- Streaming: content is replayed intact in bounded chunks
"""

from __future__ import annotations

import io
from collections.abc import Callable

import pytest

from photocat.storage.errors import TooLargeError, UnsupportedTypeError
from photocat.storage.validation import (
    SNIFF_LENGTH,
    UploadValidator,
    normalize_mime_type,
    sniff_mime_type,
)


class TestSniffMimeType:
    """Tests for magic-byte detection."""

    def test_detects_supported_types(
        self, jpeg_bytes: bytes, png_bytes: bytes, webp_bytes: bytes
    ) -> None:
        """JPEG, PNG and WebP signatures are recognized."""
        assert sniff_mime_type(jpeg_bytes[:SNIFF_LENGTH]) == "image/jpeg"
        assert sniff_mime_type(png_bytes[:SNIFF_LENGTH]) == "image/png"
        assert sniff_mime_type(webp_bytes[:SNIFF_LENGTH]) == "image/webp"

    def test_short_input_is_unknown(self, jpeg_bytes: bytes) -> None:
        """Fewer than 12 bytes cannot be identified."""
        assert sniff_mime_type(jpeg_bytes[:11]) is None

    def test_riff_without_webp_marker_is_unknown(self) -> None:
        """A RIFF container that is not WebP (e.g. WAV) is rejected."""
        assert sniff_mime_type(b"RIFF\x00\x00\x00\x00WAVEfmt ") is None

    def test_gif_is_unknown(self) -> None:
        """Unsupported image formats are not detected."""
        assert sniff_mime_type(b"GIF89a\x01\x00\x01\x00\x00\x00") is None


class TestNormalizeMimeType:
    """Tests for declared type normalization."""

    def test_parameters_and_case_are_dropped(self) -> None:
        """Declared types are compared without parameters."""
        assert normalize_mime_type("Image/PNG; charset=binary") == "image/png"

    def test_jpg_alias(self) -> None:
        """image/jpg is accepted as image/jpeg."""
        assert normalize_mime_type("image/jpg") == "image/jpeg"

    def test_missing_type(self) -> None:
        """None normalizes to an empty string."""
        assert normalize_mime_type(None) == ""


class TestSignatureEnforcement:
    """Declared and detected types must agree."""

    @pytest.fixture
    def validator(self) -> UploadValidator:
        """Validator with a 64 KiB ceiling."""
        return UploadValidator(64 * 1024)

    def test_valid_upload_chooses_extension(
        self, validator: UploadValidator, png_bytes: bytes
    ) -> None:
        """The extension comes from the sniffed type."""
        validated = validator.validate("image/png", io.BytesIO(png_bytes))

        assert validated.content_type == "image/png"
        assert validated.extension == "png"
        assert b"".join(validated.iter_chunks()) == png_bytes

    def test_mismatch_rejected(self, validator: UploadValidator, png_bytes: bytes) -> None:
        """PNG bytes declared as JPEG are rejected."""
        with pytest.raises(UnsupportedTypeError) as exc_info:
            validator.validate("image/jpeg", io.BytesIO(png_bytes))

        assert exc_info.value.declared_type == "image/jpeg"
        assert exc_info.value.detected_type == "image/png"
        assert "mismatch" in exc_info.value.message

    def test_disallowed_declared_type_rejected(
        self, validator: UploadValidator, jpeg_bytes: bytes
    ) -> None:
        """Types outside the allowlist are rejected before reading."""
        source = io.BytesIO(jpeg_bytes)

        with pytest.raises(UnsupportedTypeError):
            validator.validate("image/gif", source)

        assert source.tell() == 0

    def test_unrecognized_bytes_rejected(self, validator: UploadValidator) -> None:
        """Bytes with no known signature are rejected."""
        with pytest.raises(UnsupportedTypeError) as exc_info:
            validator.validate("image/jpeg", io.BytesIO(b"<html>" + b"x" * 100))

        assert "Unable to verify" in exc_info.value.message

    def test_too_short_rejected(self, validator: UploadValidator, jpeg_bytes: bytes) -> None:
        """Payloads shorter than the signature window are rejected."""
        with pytest.raises(UnsupportedTypeError):
            validator.validate("image/jpeg", io.BytesIO(jpeg_bytes[:8]))

    def test_iterable_source_with_tiny_chunks(
        self, validator: UploadValidator, webp_bytes: bytes
    ) -> None:
        """The sniff window is assembled across small chunks."""
        chunks = [webp_bytes[i : i + 5] for i in range(0, len(webp_bytes), 5)]

        validated = validator.validate("image/webp", chunks)

        assert b"".join(validated.iter_chunks()) == webp_bytes

    def test_content_is_single_use(self, validator: UploadValidator, jpeg_bytes: bytes) -> None:
        """A validated upload cannot be replayed."""
        validated = validator.validate("image/jpeg", io.BytesIO(jpeg_bytes))
        b"".join(validated.iter_chunks())

        with pytest.raises(RuntimeError):
            validated.iter_chunks()


class TestSizeCeiling:
    """Exactly the ceiling is accepted; one byte more is rejected."""

    CEILING = 10 * 1024

    @pytest.fixture
    def validator(self) -> UploadValidator:
        """Validator with a 10 KiB ceiling and 1 KiB chunks."""
        return UploadValidator(self.CEILING, chunk_size=1024)

    def test_exact_ceiling_accepted(
        self, validator: UploadValidator, make_image: Callable[..., bytes]
    ) -> None:
        """A payload of exactly max_upload_bytes streams through."""
        payload = make_image("jpeg", self.CEILING)

        validated = validator.validate("image/jpeg", io.BytesIO(payload), len(payload))
        streamed = b"".join(validated.iter_chunks())

        assert len(streamed) == self.CEILING
        assert validated.bytes_read == self.CEILING

    def test_one_byte_over_rejected_while_streaming(
        self, validator: UploadValidator, make_image: Callable[..., bytes]
    ) -> None:
        """Undeclared oversize payloads fail once the count passes the ceiling."""
        payload = make_image("jpeg", self.CEILING + 1)
        validated = validator.validate("image/jpeg", io.BytesIO(payload))

        with pytest.raises(TooLargeError) as exc_info:
            b"".join(validated.iter_chunks())

        assert exc_info.value.max_bytes == self.CEILING

    def test_declared_oversize_rejected_before_reading(
        self, validator: UploadValidator, make_image: Callable[..., bytes]
    ) -> None:
        """A declared size over the ceiling fails without consuming the source."""
        source = io.BytesIO(make_image("jpeg", 64))

        with pytest.raises(TooLargeError):
            validator.validate("image/jpeg", source, self.CEILING + 1)

        assert source.tell() == 0

    def test_understated_declared_size_still_enforced(
        self, validator: UploadValidator, make_image: Callable[..., bytes]
    ) -> None:
        """Bytes actually read are counted regardless of the declared size."""
        payload = make_image("png", self.CEILING * 2)
        validated = validator.validate("image/png", io.BytesIO(payload), 100)

        with pytest.raises(TooLargeError):
            for _ in validated.iter_chunks():
                pass

    def test_chunks_are_bounded(
        self, validator: UploadValidator, make_image: Callable[..., bytes]
    ) -> None:
        """No chunk after the sniffed head exceeds the configured chunk size."""
        payload = make_image("jpeg", 8 * 1024)
        validated = validator.validate("image/jpeg", io.BytesIO(payload))

        sizes = [len(chunk) for chunk in validated.iter_chunks()]

        assert max(sizes) <= 1024
