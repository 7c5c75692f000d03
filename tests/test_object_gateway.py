"""Tests for the Object Gateway.

- Validation and authorization happen before any byte reaches a backend
- Backend choice is invisible to callers
- Backend failures leave the gateway as BackendUnavailableError only
- Many concurrent uploads never collide or corrupt each other
"""

from __future__ import annotations

import hashlib
import io
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import httpx
import pytest

from photocat.storage.acl import (
    AccessPolicy,
    AclRule,
    InMemoryPolicyStore,
    Permission,
    Principal,
    PrincipalType,
    Visibility,
)
from photocat.storage.backend import ObjectBackend
from photocat.storage.config import StorageConfig, parse_acl_groups
from photocat.storage.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    ObjectNotFoundError,
    StorageBackendError,
    TooLargeError,
    UnsupportedTypeError,
)
from photocat.storage.filesystem_backend import LocalFilesystemBackend
from photocat.storage.gateway import ObjectGateway
from photocat.storage.models import ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import Category, ObjectPath
from photocat.storage.resolver import ResolvedStorage, build_gateway, build_policy_engine
from photocat.storage.validation import UploadValidator
from tests.fixtures.blob_service import FakeBlobService


@pytest.fixture
def private_gateway(tmp_path: Path) -> ObjectGateway:
    """Local gateway where objects are private and only alice and bob may upload."""
    config = StorageConfig(
        backend_override="local",
        local_root=tmp_path / "private",
        max_upload_bytes=64 * 1024,
        default_visibility="private",
        acl_groups=parse_acl_groups("uploaders=alice,bob"),
    )
    return build_gateway(config)


@pytest.fixture(params=["local", "remote"])
def any_gateway(request: pytest.FixtureRequest) -> ObjectGateway:
    """The same tests against both backends."""
    return request.getfixturevalue(f"{request.param}_gateway")


class _BrokenBackend(ObjectBackend):
    """Backend whose every call fails with the configured exception."""

    def __init__(self, error: Exception) -> None:
        self._error = error

    @property
    def backend_name(self) -> str:
        return "broken"

    def put(
        self, path: ObjectPath, chunks: Iterable[bytes], content_type: str
    ) -> StoredObjectMetadata:
        for _ in chunks:
            pass
        raise self._error

    def get(self, path: ObjectPath) -> ObjectDownload:
        raise self._error

    def head(self, path: ObjectPath) -> StoredObjectMetadata:
        raise self._error

    def exists(self, path: ObjectPath) -> bool:
        raise self._error


def _broken_gateway(error: Exception) -> ObjectGateway:
    config = StorageConfig()
    storage = ResolvedStorage(
        backend=_BrokenBackend(error),
        policy_store=InMemoryPolicyStore(),
        backend_name="broken",
    )
    return build_gateway(config, storage=storage)


class TestUploadAndRead:
    """Round trips through the gateway, on every backend."""

    def test_upload_returns_logical_path(
        self, any_gateway: ObjectGateway, jpeg_bytes: bytes
    ) -> None:
        """The returned path serves the same bytes with the sniffed type."""
        url = any_gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", len(jpeg_bytes), "alice")

        assert url.startswith("/objects/items/")
        assert url.endswith(".jpg")
        with any_gateway.open(url, "alice") as download:
            assert b"".join(download) == jpeg_bytes
            assert download.content_type == "image/jpeg"

    def test_create_reports_metadata(
        self, any_gateway: ObjectGateway, webp_bytes: bytes
    ) -> None:
        """create returns size and digest of what was stored."""
        metadata = any_gateway.create(io.BytesIO(webp_bytes), "image/webp", None, "alice")

        assert metadata.size_bytes == len(webp_bytes)
        assert metadata.sha256 == hashlib.sha256(webp_bytes).hexdigest()
        assert metadata.path.ext == "webp"

    def test_multi_image_item(self, any_gateway: ObjectGateway, png_bytes: bytes) -> None:
        """Several images share one item id under distinct indexes."""
        first = any_gateway.create(io.BytesIO(png_bytes), "image/png", None, "alice", index=0)
        second = any_gateway.create(
            io.BytesIO(png_bytes),
            "image/png",
            None,
            "alice",
            item_id=first.path.object_id,
            index=1,
        )

        assert second.path.url == f"/objects/items/{first.path.object_id}/1.png"
        assert any_gateway.exists(first.path, "alice") is True
        assert any_gateway.exists(second.path, "alice") is True

    def test_missing_object_is_not_found(self, any_gateway: ObjectGateway) -> None:
        """The category owner sees an unknown path as missing."""
        with pytest.raises(ObjectNotFoundError):
            any_gateway.get(ObjectPath.new(Category.ITEMS, "jpg"), "system")

    @pytest.mark.parametrize(
        "raw",
        ["/objects/items/../../etc/passwd", "/objects/items/nope.jpg", "/objects/"],
    )
    def test_invalid_logical_path_reads_as_missing(
        self, any_gateway: ObjectGateway, raw: str
    ) -> None:
        """Malformed paths never reach the backend and look like missing objects."""
        with pytest.raises(ObjectNotFoundError):
            any_gateway.open(raw, "alice")


class TestValidationFirst:
    """Rejected uploads never create objects."""

    def test_type_mismatch(
        self, local_gateway: ObjectGateway, local_config: StorageConfig, png_bytes: bytes
    ) -> None:
        """PNG bytes declared as JPEG are rejected and nothing is stored."""
        with pytest.raises(UnsupportedTypeError):
            local_gateway.upload(io.BytesIO(png_bytes), "image/jpeg", None, "alice")

        assert not [p for p in local_config.local_root.rglob("*") if p.is_file()]

    def test_too_large(
        self,
        local_gateway: ObjectGateway,
        local_config: StorageConfig,
        make_image: Callable[..., bytes],
    ) -> None:
        """Undeclared oversize payloads fail while streaming and leave no residue."""
        payload = make_image("jpeg", local_config.max_upload_bytes + 1)

        with pytest.raises(TooLargeError):
            local_gateway.upload(io.BytesIO(payload), "image/jpeg", None, "alice")

        assert not [p for p in local_config.local_root.rglob("*") if p.is_file()]

    def test_exact_ceiling_accepted(
        self,
        local_gateway: ObjectGateway,
        local_config: StorageConfig,
        make_image: Callable[..., bytes],
    ) -> None:
        """A payload of exactly max_upload_bytes is stored."""
        payload = make_image("png", local_config.max_upload_bytes)

        metadata = local_gateway.create(io.BytesIO(payload), "image/png", len(payload), "alice")

        assert metadata.size_bytes == local_config.max_upload_bytes

    def test_put_rejects_extension_mismatch(
        self, local_gateway: ObjectGateway, png_bytes: bytes
    ) -> None:
        """put at a .jpg path refuses PNG bytes."""
        path = ObjectPath.new(Category.ITEMS, "jpg")

        with pytest.raises(UnsupportedTypeError):
            local_gateway.put(path, "image/png", io.BytesIO(png_bytes), "alice")

    def test_denied_write_stores_nothing(
        self, private_gateway: ObjectGateway, jpeg_bytes: bytes
    ) -> None:
        """Requesters outside the uploader group cannot create objects."""
        with pytest.raises(AccessDeniedError):
            private_gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", None, "mallory")
        with pytest.raises(AccessDeniedError):
            private_gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", None, None)


class TestAccessControl:
    """Per-object policies decide reads and overwrites."""

    def test_private_object_readable_by_owner_only(
        self, private_gateway: ObjectGateway, jpeg_bytes: bytes
    ) -> None:
        """The uploader owns the object."""
        url = private_gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")

        assert private_gateway.open(url, "alice").read_all() == jpeg_bytes
        with pytest.raises(AccessDeniedError):
            private_gateway.open(url, "bob")
        with pytest.raises(AccessDeniedError):
            private_gateway.open(url, None)

    def test_denial_does_not_reveal_existence(self, private_gateway: ObjectGateway) -> None:
        """Unknown private paths are denied, not reported missing."""
        with pytest.raises(AccessDeniedError):
            private_gateway.get(ObjectPath.new(Category.ITEMS, "jpg"), "mallory")

    def test_rule_grants_read(self, private_gateway: ObjectGateway, png_bytes: bytes) -> None:
        """A user rule added to the policy lets another identity read."""
        metadata = private_gateway.create(io.BytesIO(png_bytes), "image/png", None, "alice")
        store = private_gateway.policy_engine.policy_store
        store.set_policy(
            metadata.path,
            AccessPolicy(
                owner="alice",
                rules=(
                    AclRule(
                        principal=Principal(type=PrincipalType.USER, id="carol"),
                        permission=Permission.READ,
                    ),
                ),
            ),
        )

        assert private_gateway.get(metadata.path, "carol").read_all() == png_bytes

    def test_visibility_flip_needs_no_reupload(
        self, private_gateway: ObjectGateway, png_bytes: bytes
    ) -> None:
        """Making an object public takes effect on the next read."""
        metadata = private_gateway.create(io.BytesIO(png_bytes), "image/png", None, "alice")
        assert private_gateway.cache_control(metadata.path).startswith("private")

        private_gateway.policy_engine.policy_store.set_policy(
            metadata.path, AccessPolicy(owner="alice", visibility=Visibility.PUBLIC)
        )

        assert private_gateway.get(metadata.path, None).read_all() == png_bytes
        assert private_gateway.cache_control(metadata.path) == "public, max-age=3600"

    def test_overwrite_by_owner_keeps_policy(
        self, private_gateway: ObjectGateway, make_image: Callable[..., bytes]
    ) -> None:
        """The owner can replace bytes; the attached policy stays."""
        first = private_gateway.create(
            io.BytesIO(make_image("jpeg", 100)), "image/jpeg", None, "alice"
        )
        engine = private_gateway.policy_engine
        policy = engine.policy_store.get_policy(first.path)
        replacement = make_image("jpeg", 300, b"\x07")

        private_gateway.put(first.path, "image/jpeg", io.BytesIO(replacement), "alice")

        assert engine.policy_store.get_policy(first.path) == policy
        assert private_gateway.get(first.path, "alice").read_all() == replacement

    def test_other_uploader_cannot_overwrite(
        self, private_gateway: ObjectGateway, make_image: Callable[..., bytes]
    ) -> None:
        """Membership in the uploader group does not extend to existing objects."""
        first = private_gateway.create(
            io.BytesIO(make_image("jpeg", 100)), "image/jpeg", None, "alice"
        )

        with pytest.raises(AccessDeniedError):
            private_gateway.put(
                first.path, "image/jpeg", io.BytesIO(make_image("jpeg", 100)), "bob"
            )

    def test_private_object_stays_private_after_overwrite(
        self, any_gateway: ObjectGateway, make_image: Callable[..., bytes]
    ) -> None:
        """Replacing bytes never resets a tightened policy to the public default."""
        first = any_gateway.create(
            io.BytesIO(make_image("jpeg", 100)), "image/jpeg", None, "alice"
        )
        store = any_gateway.policy_engine.policy_store
        store.set_policy(first.path, AccessPolicy(owner="alice"))
        with pytest.raises(AccessDeniedError):
            any_gateway.get(first.path, "mallory")
        replacement = make_image("jpeg", 300, b"\x07")

        any_gateway.put(first.path, "image/jpeg", io.BytesIO(replacement), "alice")

        assert store.get_policy(first.path) == AccessPolicy(owner="alice")
        assert any_gateway.cache_control(first.path).startswith("private")
        with pytest.raises(AccessDeniedError):
            any_gateway.get(first.path, "mallory")
        with pytest.raises(AccessDeniedError):
            any_gateway.get(first.path, None)
        assert any_gateway.get(first.path, "alice").read_all() == replacement

    @pytest.mark.parametrize("requester", ["mallory", None])
    def test_missing_and_private_paths_look_alike(
        self, any_gateway: ObjectGateway, jpeg_bytes: bytes, requester: str | None
    ) -> None:
        """Under the public default an outsider cannot tell missing from private."""
        stored = any_gateway.create(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")
        any_gateway.policy_engine.policy_store.set_policy(
            stored.path, AccessPolicy(owner="alice")
        )
        missing = ObjectPath.new(Category.ITEMS, "jpg")

        with pytest.raises(AccessDeniedError) as private_exc:
            any_gateway.get(stored.path, requester)
        with pytest.raises(AccessDeniedError) as missing_exc:
            any_gateway.get(missing, requester)
        with pytest.raises(AccessDeniedError):
            any_gateway.exists(missing, requester)

        assert private_exc.value.code == missing_exc.value.code
        assert private_exc.value.message == missing_exc.value.message

    def test_public_default_cache_control(
        self, local_gateway: ObjectGateway, jpeg_bytes: bytes
    ) -> None:
        """Objects under the default public posture are cacheable publicly."""
        metadata = local_gateway.create(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")

        assert local_gateway.cache_control(metadata.path) == "public, max-age=3600"
        assert local_gateway.get(metadata.path, None).read_all() == jpeg_bytes


class TestConcurrency:
    """Concurrent uploads stay distinct and intact."""

    def test_thousand_concurrent_uploads(
        self,
        local_gateway: ObjectGateway,
        local_config: StorageConfig,
        make_image: Callable[..., bytes],
    ) -> None:
        """1,000 parallel uploads produce 1,000 distinct, readable objects."""
        payloads = [make_image("jpeg", 256, bytes([i % 251])) for i in range(1000)]

        def upload(payload: bytes) -> str:
            return local_gateway.upload(io.BytesIO(payload), "image/jpeg", len(payload), "u")

        with ThreadPoolExecutor(max_workers=32) as pool:
            urls = list(pool.map(upload, payloads))

        assert len(set(urls)) == 1000
        for url, payload in zip(urls, payloads, strict=True):
            assert local_gateway.open(url, "u").read_all() == payload
        assert not list(local_config.local_root.rglob("*.tmp"))

    def test_concurrent_overwrites_end_whole(
        self, local_gateway: ObjectGateway, make_image: Callable[..., bytes]
    ) -> None:
        """Racing writers to one path leave exactly one complete version."""
        path = ObjectPath.new(Category.ITEMS, "png")
        versions = [make_image("png", 4096, bytes([i])) for i in range(20)]

        def write(payload: bytes) -> None:
            local_gateway.put(path, "image/png", io.BytesIO(payload), "alice")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(write, versions))

        assert local_gateway.get(path, "alice").read_all() in versions


class TestErrorTranslation:
    """Only BackendUnavailableError leaves the gateway for backend failures."""

    @pytest.mark.parametrize(
        "error",
        [
            StorageBackendError("disk full"),
            httpx.ConnectError("refused"),
        ],
    )
    def test_backend_failures_become_unavailable(
        self, error: Exception, jpeg_bytes: bytes
    ) -> None:
        """Raw backend errors are normalized for every operation."""
        gateway = _broken_gateway(error)
        path = ObjectPath.new(Category.ITEMS, "jpg")

        with pytest.raises(BackendUnavailableError):
            gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")
        with pytest.raises(BackendUnavailableError):
            gateway.get(path, "system")
        with pytest.raises(BackendUnavailableError):
            gateway.exists(path, "system")

    def test_validation_errors_pass_through(self, jpeg_bytes: bytes) -> None:
        """Client errors are not masked as outages."""
        gateway = _broken_gateway(StorageBackendError("unused"))

        with pytest.raises(UnsupportedTypeError):
            gateway.upload(io.BytesIO(b"not an image at all"), "image/jpeg", None, "alice")

    def test_remote_outage_is_unavailable(
        self,
        remote_gateway: ObjectGateway,
        blob_service: FakeBlobService,
        jpeg_bytes: bytes,
    ) -> None:
        """Exhausted retries against the blob API surface as BackendUnavailableError."""
        blob_service.fail_next = [503] * 10

        with pytest.raises(BackendUnavailableError) as exc_info:
            remote_gateway.upload(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")

        assert "photo-bucket" not in str(exc_info.value)

    def test_backend_name_reported(
        self, local_gateway: ObjectGateway, remote_gateway: ObjectGateway
    ) -> None:
        """Operators can tell which backend was resolved."""
        assert local_gateway.backend_name == "local"
        assert remote_gateway.backend_name == "remote"


class TestGatewayWiring:
    """Tests for direct construction."""

    def test_explicit_components(self, tmp_path: Path, jpeg_bytes: bytes) -> None:
        """A gateway built by hand behaves like the resolved one."""
        store = InMemoryPolicyStore()
        gateway = ObjectGateway(
            backend=LocalFilesystemBackend(tmp_path),
            validator=UploadValidator(1024 * 1024),
            policy_engine=build_policy_engine(StorageConfig(), store),
            cache_ttl_seconds=60,
        )

        metadata = gateway.create(io.BytesIO(jpeg_bytes), "image/jpeg", None, "alice")

        assert gateway.backend_name == "local"
        assert store.get_policy(metadata.path) is not None
        assert gateway.cache_control(metadata.path) == "public, max-age=60"
