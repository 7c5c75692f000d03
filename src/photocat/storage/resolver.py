"""Backend selection, done once per process.

Priority:
1. Explicit override (PHOTOCAT_STORAGE_BACKEND = local | remote)
2. Presence of a sidecar endpoint selects remote
3. Local filesystem

Contradictory or unusable configuration raises ConfigurationError at
startup; requests never see a half-configured backend.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from photocat.storage.acl import (
    AccessPolicyEngine,
    FilesystemPolicyStore,
    PolicyStore,
    StaticGroupResolver,
    Visibility,
    default_category_policies,
)
from photocat.storage.backend import ObjectBackend
from photocat.storage.config import (
    BACKEND_LOCAL,
    BACKEND_REMOTE,
    ENV_SIDECAR_ENDPOINT,
    ENV_STORAGE_BACKEND,
    KNOWN_BACKENDS,
    StorageConfig,
    load_storage_config,
)
from photocat.storage.errors import ConfigurationError, StorageBackendError
from photocat.storage.filesystem_backend import LocalFilesystemBackend
from photocat.storage.remote_backend import RemoteMetadataPolicyStore, RemoteSidecarBackend
from photocat.storage.retry import RetryPolicy
from photocat.storage.sidecar import SidecarCredentialProvider
from photocat.storage.validation import UploadValidator

if TYPE_CHECKING:
    from photocat.storage.gateway import ObjectGateway

logger = logging.getLogger(__name__)

POLICY_DIR_NAME = ".acl"


@dataclass(frozen=True)
class ResolvedStorage:
    """The active backend and the policy store that goes with it."""

    backend: ObjectBackend
    policy_store: PolicyStore
    backend_name: str


def select_backend_name(config: StorageConfig) -> str:
    """Apply the selection priority without building anything.

    Raises:
        ConfigurationError: If the override names an unknown backend.
    """
    if config.backend_override is not None:
        if config.backend_override not in KNOWN_BACKENDS:
            raise ConfigurationError(
                f"{ENV_STORAGE_BACKEND} must be one of {sorted(KNOWN_BACKENDS)}, "
                f"got {config.backend_override!r}"
            )
        return config.backend_override
    if config.sidecar_endpoint:
        return BACKEND_REMOTE
    return BACKEND_LOCAL


def _resolve_local(config: StorageConfig) -> ResolvedStorage:
    try:
        backend = LocalFilesystemBackend(config.local_root)
    except StorageBackendError as e:
        raise ConfigurationError(f"Local storage root is not usable: {e.message}") from e
    policy_store = FilesystemPolicyStore(backend.root / POLICY_DIR_NAME)
    return ResolvedStorage(backend=backend, policy_store=policy_store, backend_name=BACKEND_LOCAL)


def _resolve_remote(
    config: StorageConfig,
    http_client: httpx.Client | None,
) -> ResolvedStorage:
    if not config.sidecar_endpoint:
        raise ConfigurationError(
            f"Remote storage selected but {ENV_SIDECAR_ENDPOINT} is not set"
        )
    bucket, prefix = config.bucket_and_prefix()

    retry_policy = RetryPolicy(
        max_attempts=config.retry_max_attempts,
        base_delay=config.retry_base_delay_seconds,
    )
    credentials = SidecarCredentialProvider(
        config.sidecar_endpoint,
        http_client,
        retry_policy=retry_policy,
    )
    try:
        credentials.check_available()
    except StorageBackendError as e:
        credentials.close()
        raise ConfigurationError(
            f"Credential sidecar is unreachable at startup: {e.message}"
        ) from e

    backend = RemoteSidecarBackend(
        bucket=bucket,
        prefix=prefix,
        credentials=credentials,
        api_base_url=config.remote_api_url,
        http_client=http_client,
        retry_policy=retry_policy,
    )
    return ResolvedStorage(
        backend=backend,
        policy_store=RemoteMetadataPolicyStore(backend),
        backend_name=BACKEND_REMOTE,
    )


def resolve_storage(
    config: StorageConfig,
    *,
    http_client: httpx.Client | None = None,
) -> ResolvedStorage:
    """Build the backend selected by config.

    Args:
        config: Loaded storage configuration.
        http_client: Shared client for the remote backend (tests inject one
            with a MockTransport).

    Raises:
        ConfigurationError: On unknown override, missing sidecar endpoint or
            bucket, or an unreachable sidecar.
    """
    name = select_backend_name(config)
    if name == BACKEND_REMOTE:
        resolved = _resolve_remote(config, http_client)
    else:
        resolved = _resolve_local(config)
    logger.info("Object storage backend selected: %s", resolved.backend_name)
    return resolved


def build_policy_engine(config: StorageConfig, policy_store: PolicyStore) -> AccessPolicyEngine:
    """Category defaults and group memberships from config."""
    defaults = default_category_policies(
        system_owner=config.system_owner,
        visibility=Visibility(config.default_visibility),
        uploader_group=config.uploader_group,
    )
    return AccessPolicyEngine(
        policy_store,
        defaults,
        StaticGroupResolver(config.acl_groups),
    )


def build_gateway(
    config: StorageConfig | None = None,
    *,
    storage: ResolvedStorage | None = None,
    http_client: httpx.Client | None = None,
) -> ObjectGateway:
    """Wire validator, policy engine and backend into a gateway.

    Args:
        config: Storage configuration. When None, the environment is read and
            the process-wide storage from get_storage() is used.
        storage: Pre-resolved storage. Resolved from config if None.
        http_client: Passed to resolve_storage.
    """
    from photocat.storage.gateway import ObjectGateway

    if config is None:
        config = load_storage_config()
        if storage is None:
            storage = get_storage(config)
    if storage is None:
        storage = resolve_storage(config, http_client=http_client)

    return ObjectGateway(
        backend=storage.backend,
        validator=UploadValidator(config.max_upload_bytes),
        policy_engine=build_policy_engine(config, storage.policy_store),
        backend_name=storage.backend_name,
        cache_ttl_seconds=config.cache_ttl_seconds,
    )


_storage: ResolvedStorage | None = None
_storage_lock = threading.Lock()


def get_storage(config: StorageConfig | None = None) -> ResolvedStorage:
    """Return the process-wide storage, resolving it on first use."""
    global _storage

    if _storage is not None:
        return _storage
    with _storage_lock:
        if _storage is None:
            _storage = resolve_storage(config or load_storage_config())
        return _storage


def reset_storage() -> None:
    """Forget the process-wide storage. For testing only."""
    global _storage

    with _storage_lock:
        _storage = None
