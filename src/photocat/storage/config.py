"""Object storage configuration.

Read once at process start by load_storage_config() and passed by reference
to the resolver and the gateway. Nothing in request handling reads the
environment directly.

Environment variables:
    PHOTOCAT_STORAGE_BACKEND: Explicit override, "local" or "remote" (default: unset)
    PHOTOCAT_SIDECAR_ENDPOINT: Credential sidecar URL; its presence selects the
        remote backend (fallback: REPLIT_SIDECAR_ENDPOINT)
    PHOTOCAT_LOCAL_STORAGE_DIR: Root directory for the local backend
        (fallback: LOCAL_STORAGE_DIR, default: ./uploads)
    PHOTOCAT_PRIVATE_OBJECT_DIR: "/bucket[/prefix]" for the remote backend
        (fallback: PRIVATE_OBJECT_DIR)
    PHOTOCAT_REMOTE_API_URL: Blob API base URL (default: https://storage.googleapis.com)
    PHOTOCAT_MAX_UPLOAD_BYTES: Upload size ceiling (default: 10 MiB)
    PHOTOCAT_CACHE_TTL_SECONDS: Cache-Control max-age for reads (default: 3600)
    PHOTOCAT_RETRY_MAX_ATTEMPTS: Remote retry budget (default: 3)
    PHOTOCAT_RETRY_BASE_DELAY_MS: First backoff delay (default: 200)
    PHOTOCAT_DEFAULT_VISIBILITY: Category default visibility (default: public)
    PHOTOCAT_SYSTEM_OWNER: Owner of category default policies (default: system)
    PHOTOCAT_UPLOADER_GROUP: Group granted write on categories (default: uploaders)
    PHOTOCAT_ACL_GROUPS: Static group memberships, "group=a,b;other=*"
        (default: "uploaders=*")
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from photocat.storage.errors import ConfigurationError

ENV_STORAGE_BACKEND: Final[str] = "PHOTOCAT_STORAGE_BACKEND"
ENV_SIDECAR_ENDPOINT: Final[str] = "PHOTOCAT_SIDECAR_ENDPOINT"
ENV_SIDECAR_ENDPOINT_FALLBACK: Final[str] = "REPLIT_SIDECAR_ENDPOINT"
ENV_LOCAL_STORAGE_DIR: Final[str] = "PHOTOCAT_LOCAL_STORAGE_DIR"
ENV_LOCAL_STORAGE_DIR_FALLBACK: Final[str] = "LOCAL_STORAGE_DIR"
ENV_PRIVATE_OBJECT_DIR: Final[str] = "PHOTOCAT_PRIVATE_OBJECT_DIR"
ENV_PRIVATE_OBJECT_DIR_FALLBACK: Final[str] = "PRIVATE_OBJECT_DIR"
ENV_REMOTE_API_URL: Final[str] = "PHOTOCAT_REMOTE_API_URL"
ENV_MAX_UPLOAD_BYTES: Final[str] = "PHOTOCAT_MAX_UPLOAD_BYTES"
ENV_CACHE_TTL_SECONDS: Final[str] = "PHOTOCAT_CACHE_TTL_SECONDS"
ENV_RETRY_MAX_ATTEMPTS: Final[str] = "PHOTOCAT_RETRY_MAX_ATTEMPTS"
ENV_RETRY_BASE_DELAY_MS: Final[str] = "PHOTOCAT_RETRY_BASE_DELAY_MS"
ENV_DEFAULT_VISIBILITY: Final[str] = "PHOTOCAT_DEFAULT_VISIBILITY"
ENV_SYSTEM_OWNER: Final[str] = "PHOTOCAT_SYSTEM_OWNER"
ENV_UPLOADER_GROUP: Final[str] = "PHOTOCAT_UPLOADER_GROUP"
ENV_ACL_GROUPS: Final[str] = "PHOTOCAT_ACL_GROUPS"

BACKEND_LOCAL: Final[str] = "local"
BACKEND_REMOTE: Final[str] = "remote"
KNOWN_BACKENDS: Final[frozenset[str]] = frozenset({BACKEND_LOCAL, BACKEND_REMOTE})

DEFAULT_MAX_UPLOAD_BYTES: Final[int] = 10 * 1024 * 1024
DEFAULT_CACHE_TTL_SECONDS: Final[int] = 3600
DEFAULT_RETRY_MAX_ATTEMPTS: Final[int] = 3
DEFAULT_RETRY_BASE_DELAY_MS: Final[int] = 200
DEFAULT_REMOTE_API_URL: Final[str] = "https://storage.googleapis.com"
DEFAULT_SYSTEM_OWNER: Final[str] = "system"
DEFAULT_UPLOADER_GROUP: Final[str] = "uploaders"
DEFAULT_ACL_GROUPS: Final[str] = "uploaders=*"


@dataclass(frozen=True)
class StorageConfig:
    """Object storage configuration (immutable).

    Attributes:
        backend_override: Explicit backend name, or None.
        sidecar_endpoint: Credential sidecar base URL, or None when absent.
        local_root: Root directory for the local backend.
        private_object_dir: "/bucket[/prefix]" for the remote backend.
        remote_api_url: Blob API base URL.
        max_upload_bytes: Upload size ceiling in bytes.
        cache_ttl_seconds: max-age sent on reads.
        retry_max_attempts: Total attempts for transient remote failures.
        retry_base_delay_seconds: First backoff delay.
        default_visibility: "public" or "private" for category defaults.
        system_owner: Owner identity of category default policies.
        uploader_group: Group granted write on every category.
        acl_groups: Static group memberships (group id -> member identities).
    """

    backend_override: str | None = None
    sidecar_endpoint: str | None = None
    local_root: Path = field(default_factory=lambda: Path.cwd() / "uploads")
    private_object_dir: str | None = None
    remote_api_url: str = DEFAULT_REMOTE_API_URL
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_MS / 1000
    default_visibility: str = "public"
    system_owner: str = DEFAULT_SYSTEM_OWNER
    uploader_group: str = DEFAULT_UPLOADER_GROUP
    acl_groups: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: parse_acl_groups(DEFAULT_ACL_GROUPS)
    )

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_upload_bytes <= 0:
            raise ConfigurationError(
                f"{ENV_MAX_UPLOAD_BYTES} must be a positive integer, got {self.max_upload_bytes}"
            )
        if self.retry_max_attempts <= 0:
            raise ConfigurationError(
                f"{ENV_RETRY_MAX_ATTEMPTS} must be a positive integer, "
                f"got {self.retry_max_attempts}"
            )
        if self.default_visibility not in ("public", "private"):
            raise ConfigurationError(
                f"{ENV_DEFAULT_VISIBILITY} must be 'public' or 'private', "
                f"got {self.default_visibility!r}"
            )
        if not self.system_owner:
            raise ConfigurationError(f"{ENV_SYSTEM_OWNER} must not be empty")

    def bucket_and_prefix(self) -> tuple[str, str]:
        """Split private_object_dir into (bucket, prefix).

        Raises:
            ConfigurationError: If private_object_dir is unset or has no bucket.
        """
        raw = (self.private_object_dir or "").strip().strip("/")
        if not raw:
            raise ConfigurationError(
                f"{ENV_PRIVATE_OBJECT_DIR} is required for the remote backend "
                "(expected /bucket[/prefix])"
            )
        bucket, _, prefix = raw.partition("/")
        return bucket, prefix.strip("/")


def _first_env(environ: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return None


def _parse_positive_int(environ: Mapping[str, str], env_var: str, default: int) -> int:
    """Parse a positive integer from the environment.

    Raises:
        ConfigurationError: If the value is set but not a positive integer.
    """
    raw = (environ.get(env_var) or "").strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{env_var} must be a positive integer, got '{raw}'") from e

    if value <= 0:
        raise ConfigurationError(f"{env_var} must be a positive integer, got {value}")

    return value


def parse_acl_groups(raw: str) -> dict[str, frozenset[str]]:
    """Parse "group=a,b;other=*" into a membership map.

    Raises:
        ConfigurationError: If an entry has no "=" or an empty group name.
    """
    groups: dict[str, frozenset[str]] = {}
    for entry in raw.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ConfigurationError(f"{ENV_ACL_GROUPS} entry must be group=members: {entry!r}")
        name, members = entry.split("=", 1)
        name = name.strip()
        if not name:
            raise ConfigurationError(f"{ENV_ACL_GROUPS} entry has an empty group name")
        groups[name] = frozenset(m.strip() for m in members.split(",") if m.strip())
    return groups


def load_storage_config(environ: Mapping[str, str] | None = None) -> StorageConfig:
    """Load storage configuration from environment variables.

    Args:
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        StorageConfig with validated values.

    Raises:
        ConfigurationError: If any value is invalid.
    """
    env = os.environ if environ is None else environ

    override = _first_env(env, ENV_STORAGE_BACKEND)
    local_root = _first_env(env, ENV_LOCAL_STORAGE_DIR, ENV_LOCAL_STORAGE_DIR_FALLBACK)
    base_delay_ms = _parse_positive_int(env, ENV_RETRY_BASE_DELAY_MS, DEFAULT_RETRY_BASE_DELAY_MS)

    return StorageConfig(
        backend_override=override.lower() if override else None,
        sidecar_endpoint=_first_env(env, ENV_SIDECAR_ENDPOINT, ENV_SIDECAR_ENDPOINT_FALLBACK),
        local_root=Path(local_root) if local_root else Path.cwd() / "uploads",
        private_object_dir=_first_env(env, ENV_PRIVATE_OBJECT_DIR, ENV_PRIVATE_OBJECT_DIR_FALLBACK),
        remote_api_url=_first_env(env, ENV_REMOTE_API_URL) or DEFAULT_REMOTE_API_URL,
        max_upload_bytes=_parse_positive_int(env, ENV_MAX_UPLOAD_BYTES, DEFAULT_MAX_UPLOAD_BYTES),
        cache_ttl_seconds=_parse_positive_int(
            env, ENV_CACHE_TTL_SECONDS, DEFAULT_CACHE_TTL_SECONDS
        ),
        retry_max_attempts=_parse_positive_int(
            env, ENV_RETRY_MAX_ATTEMPTS, DEFAULT_RETRY_MAX_ATTEMPTS
        ),
        retry_base_delay_seconds=base_delay_ms / 1000,
        default_visibility=(_first_env(env, ENV_DEFAULT_VISIBILITY) or "public").lower(),
        system_owner=_first_env(env, ENV_SYSTEM_OWNER) or DEFAULT_SYSTEM_OWNER,
        uploader_group=_first_env(env, ENV_UPLOADER_GROUP) or DEFAULT_UPLOADER_GROUP,
        acl_groups=parse_acl_groups(_first_env(env, ENV_ACL_GROUPS) or DEFAULT_ACL_GROUPS),
    )
