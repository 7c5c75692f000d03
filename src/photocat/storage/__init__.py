"""photocat object storage.

Persists and serves item photographs behind one gateway, whether the
deployment runs against a cloud blob store reached through a credential
sidecar or against a local directory.

Backends:
- LocalFilesystemBackend: sandboxed local directory (default)
- RemoteSidecarBackend: blob store JSON API with sidecar-issued tokens

Environment Variables:
    PHOTOCAT_STORAGE_BACKEND: "local" or "remote" (default: auto-detect)
    PHOTOCAT_SIDECAR_ENDPOINT: Credential sidecar URL (selects remote)
    PHOTOCAT_LOCAL_STORAGE_DIR: Root directory for the local backend
        (default: ./uploads)
"""

from photocat.storage.acl import (
    AccessDecision,
    AccessPolicy,
    AccessPolicyEngine,
    AclRule,
    Permission,
    Principal,
    PrincipalType,
    Visibility,
)
from photocat.storage.backend import ObjectBackend
from photocat.storage.config import StorageConfig, load_storage_config
from photocat.storage.errors import (
    AccessDeniedError,
    BackendUnavailableError,
    ConfigurationError,
    InvalidObjectPathError,
    ObjectNotFoundError,
    ObjectStorageError,
    PathTraversalError,
    TooLargeError,
    UnsupportedTypeError,
)
from photocat.storage.gateway import ObjectGateway
from photocat.storage.models import ObjectDownload, StoredObjectMetadata
from photocat.storage.paths import Category, ObjectPath
from photocat.storage.resolver import build_gateway, get_storage, resolve_storage
from photocat.storage.validation import UploadValidator, sniff_mime_type

__all__ = [
    "AccessDecision",
    "AccessDeniedError",
    "AccessPolicy",
    "AccessPolicyEngine",
    "AclRule",
    "BackendUnavailableError",
    "Category",
    "ConfigurationError",
    "InvalidObjectPathError",
    "ObjectBackend",
    "ObjectDownload",
    "ObjectGateway",
    "ObjectNotFoundError",
    "ObjectPath",
    "ObjectStorageError",
    "PathTraversalError",
    "Permission",
    "Principal",
    "PrincipalType",
    "StorageConfig",
    "StoredObjectMetadata",
    "TooLargeError",
    "UnsupportedTypeError",
    "UploadValidator",
    "Visibility",
    "build_gateway",
    "get_storage",
    "load_storage_config",
    "resolve_storage",
    "sniff_mime_type",
]
