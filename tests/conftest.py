"""Pytest configuration and fixtures for photocat tests.

Provides image payload builders, environment isolation, and an in-process
fake of the credential sidecar plus blob JSON API served through
httpx.MockTransport (no network).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest

from photocat.storage.config import StorageConfig
from photocat.storage.gateway import ObjectGateway
from photocat.storage.resolver import build_gateway, reset_storage
from tests.fixtures.blob_service import (
    BLOB_API_URL,
    SIDECAR_URL,
    TEST_BUCKET,
    TEST_PREFIX,
    FakeBlobService,
)

_ENV_VARS = [
    "PHOTOCAT_STORAGE_BACKEND",
    "PHOTOCAT_SIDECAR_ENDPOINT",
    "REPLIT_SIDECAR_ENDPOINT",
    "PHOTOCAT_LOCAL_STORAGE_DIR",
    "LOCAL_STORAGE_DIR",
    "PHOTOCAT_PRIVATE_OBJECT_DIR",
    "PRIVATE_OBJECT_DIR",
    "PHOTOCAT_REMOTE_API_URL",
    "PHOTOCAT_MAX_UPLOAD_BYTES",
    "PHOTOCAT_CACHE_TTL_SECONDS",
    "PHOTOCAT_RETRY_MAX_ATTEMPTS",
    "PHOTOCAT_RETRY_BASE_DELAY_MS",
    "PHOTOCAT_DEFAULT_VISIBILITY",
    "PHOTOCAT_SYSTEM_OWNER",
    "PHOTOCAT_UPLOADER_GROUP",
    "PHOTOCAT_ACL_GROUPS",
    "PHOTOCAT_OTEL_ENABLED",
    "PHOTOCAT_OTEL_TEST_CAPTURE",
    "PHOTOCAT_REQUIRE_OTEL",
]

_SIGNATURES = {
    "jpeg": b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01",
    "png": b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR",
    "webp": b"RIFF\x24\x00\x00\x00WEBPVP8 ",
}


@pytest.fixture(autouse=True)
def isolated_storage_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear storage and tracing environment variables for every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_storage()
    yield
    reset_storage()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Return a builder of payloads with a valid image signature.

    make_image("png", 2048) -> 2048 bytes starting with the PNG signature.
    """

    def _make(kind: str = "jpeg", size: int = 1024, fill: bytes = b"\xab") -> bytes:
        head = _SIGNATURES[kind]
        if size < len(head):
            raise ValueError("size smaller than signature")
        return head + fill * (size - len(head))

    return _make


@pytest.fixture
def jpeg_bytes(make_image: Callable[..., bytes]) -> bytes:
    """A small JPEG-signed payload."""
    return make_image("jpeg", 4096)


@pytest.fixture
def png_bytes(make_image: Callable[..., bytes]) -> bytes:
    """A small PNG-signed payload."""
    return make_image("png", 2048)


@pytest.fixture
def webp_bytes(make_image: Callable[..., bytes]) -> bytes:
    """A small WebP-signed payload."""
    return make_image("webp", 1500)


@pytest.fixture
def local_config(tmp_path: Path) -> StorageConfig:
    """StorageConfig for the local backend under tmp_path."""
    return StorageConfig(
        backend_override="local",
        local_root=tmp_path / "uploads",
        max_upload_bytes=256 * 1024,
    )


@pytest.fixture
def local_gateway(local_config: StorageConfig) -> ObjectGateway:
    """Gateway over the local filesystem backend."""
    return build_gateway(local_config)


@pytest.fixture
def blob_service() -> FakeBlobService:
    """A fresh fake sidecar and blob store."""
    return FakeBlobService()


@pytest.fixture
def blob_http_client(blob_service: FakeBlobService) -> Iterator[httpx.Client]:
    """httpx client routed to the fake blob service."""
    client = httpx.Client(transport=httpx.MockTransport(blob_service.handler))
    yield client
    client.close()


@pytest.fixture
def remote_config() -> StorageConfig:
    """StorageConfig selecting the remote backend against the fake service."""
    return StorageConfig(
        sidecar_endpoint=SIDECAR_URL,
        private_object_dir=f"/{TEST_BUCKET}/{TEST_PREFIX}",
        remote_api_url=BLOB_API_URL,
        max_upload_bytes=256 * 1024,
        retry_base_delay_seconds=0.001,
    )


@pytest.fixture
def remote_gateway(
    remote_config: StorageConfig, blob_http_client: httpx.Client
) -> ObjectGateway:
    """Gateway over the remote backend talking to the fake service."""
    return build_gateway(remote_config, http_client=blob_http_client)
