"""Per-object access policies and their evaluation.

Evaluation is default-deny:
- write: allowed for the owner, or when the first rule matching the
  requester grants write.
- read: allowed when the object is public, for the owner, or when the first
  rule matching the requester grants read (a write grant implies read).
- Rules are checked in order and the first rule whose principal matches the
  requester decides. Rules are never merged.
- A path without an attached policy reads as private whatever the category
  visibility, so a missing object and a private one look alike to outsiders.

Policies are looked up on every call. Visibility can change between requests
without re-uploading bytes, so nothing here caches a decision.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from photocat.storage.errors import PathTraversalError, StorageBackendError
from photocat.storage.paths import Category, ObjectPath

logger = logging.getLogger(__name__)

ANY_IDENTITY = "*"


class Visibility(StrEnum):
    """Read posture of an object before rule evaluation."""

    PUBLIC = "public"
    PRIVATE = "private"


class Permission(StrEnum):
    """Operations a rule can grant."""

    READ = "read"
    WRITE = "write"


class PrincipalType(StrEnum):
    """Kinds of principals a rule can name."""

    USER = "user"
    GROUP = "group"


class AccessDecisionCode(StrEnum):
    """Decision codes for logs and error responses."""

    ALLOWED_PUBLIC = "ACL_ALLOWED_PUBLIC"
    ALLOWED_OWNER = "ACL_ALLOWED_OWNER"
    ALLOWED_RULE = "ACL_ALLOWED_RULE"
    DENIED_NO_IDENTITY = "ACL_DENIED_NO_IDENTITY"
    DENIED_RULE = "ACL_DENIED_RULE"
    DENIED_NO_MATCH = "ACL_DENIED_NO_MATCH"


@dataclass(frozen=True, slots=True)
class Principal:
    """A user or group named by a rule."""

    type: PrincipalType
    id: str


@dataclass(frozen=True, slots=True)
class AclRule:
    """Grants one permission to one principal."""

    principal: Principal
    permission: Permission

    def grants(self, operation: Permission) -> bool:
        """Write grants imply read."""
        return self.permission == Permission.WRITE or self.permission == operation


@dataclass(frozen=True, slots=True)
class AccessPolicy:
    """Access policy attached to an object or used as a category default.

    Attributes:
        owner: Identity that owns the object.
        visibility: Public objects are readable by anyone.
        rules: Ordered rules, first principal match wins.
    """

    owner: str
    visibility: Visibility = Visibility.PRIVATE
    rules: tuple[AclRule, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored JSON layout."""
        return {
            "owner": self.owner,
            "visibility": self.visibility.value,
            "aclRules": [
                {
                    "group": {"type": rule.principal.type.value, "id": rule.principal.id},
                    "permission": rule.permission.value,
                }
                for rule in self.rules
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AccessPolicy:
        """Parse the stored JSON layout.

        Raises:
            ValueError: If a field is missing or has an unknown value.
        """
        rules: list[AclRule] = []
        for raw_rule in data.get("aclRules") or []:
            group = raw_rule["group"]
            rules.append(
                AclRule(
                    principal=Principal(type=PrincipalType(group["type"]), id=str(group["id"])),
                    permission=Permission(raw_rule["permission"]),
                )
            )
        return cls(
            owner=str(data["owner"]),
            visibility=Visibility(data.get("visibility", Visibility.PRIVATE.value)),
            rules=tuple(rules),
        )


@dataclass(frozen=True, slots=True)
class AccessDecision:
    """Result of policy evaluation.

    Attributes:
        allow: True if access is allowed.
        code: Machine-readable decision code.
        message: Human-readable message.
    """

    allow: bool
    code: AccessDecisionCode
    message: str


class GroupMembershipResolver(Protocol):
    """Decides whether an identity belongs to a group.

    Group membership is an extension point: static configuration today,
    a directory lookup later.
    """

    def is_member(self, group_id: str, identity: str) -> bool:
        """Return True if identity is a member of group_id."""
        ...


class StaticGroupResolver:
    """Group memberships from configuration. "*" admits any non-empty identity."""

    def __init__(self, groups: Mapping[str, frozenset[str]] | None = None) -> None:
        self._groups: dict[str, frozenset[str]] = dict(groups or {})

    def is_member(self, group_id: str, identity: str) -> bool:
        """Check static membership."""
        members = self._groups.get(group_id)
        if not members or not identity:
            return False
        return ANY_IDENTITY in members or identity in members


class PolicyStore(Protocol):
    """Persistence for policies attached to individual objects."""

    def get_policy(self, path: ObjectPath) -> AccessPolicy | None:
        """Return the attached policy, or None when none is attached."""
        ...

    def set_policy(self, path: ObjectPath, policy: AccessPolicy) -> None:
        """Attach or replace the policy of an object."""
        ...


class InMemoryPolicyStore:
    """In-memory policy store for testing and development."""

    def __init__(self) -> None:
        self._policies: dict[ObjectPath, AccessPolicy] = {}
        self._lock = threading.Lock()

    def get_policy(self, path: ObjectPath) -> AccessPolicy | None:
        """Return the attached policy."""
        with self._lock:
            return self._policies.get(path)

    def set_policy(self, path: ObjectPath, policy: AccessPolicy) -> None:
        """Attach a policy."""
        with self._lock:
            self._policies[path] = policy

    def clear(self) -> None:
        """Clear all policies. For testing only."""
        with self._lock:
            self._policies.clear()


class FilesystemPolicyStore:
    """Policies as JSON files mirroring the object layout.

    Layout: {root}/{category}/{id}.{ext}.acl.json (or .../{id}/{index}.{ext}.acl.json).
    Writes go through a temp file and os.replace, like object writes.
    """

    SUFFIX = ".acl.json"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        """Return the policy root directory."""
        return self._root

    def _policy_file(self, path: ObjectPath) -> Path:
        candidate = self._root.joinpath(*path.segments[:-1], path.segments[-1] + self.SUFFIX)
        resolved = candidate.resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError as e:
            raise PathTraversalError(object_path=path.url) from e
        return resolved

    def get_policy(self, path: ObjectPath) -> AccessPolicy | None:
        """Read the policy file, None if absent."""
        policy_file = self._policy_file(path)
        try:
            raw = policy_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageBackendError(
                "Failed to read access policy", object_path=path.url, cause=e
            ) from e
        try:
            return AccessPolicy.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageBackendError(
                "Stored access policy is malformed", object_path=path.url, cause=e
            ) from e

    def set_policy(self, path: ObjectPath, policy: AccessPolicy) -> None:
        """Write the policy file atomically."""
        policy_file = self._policy_file(path)
        tmp_file = policy_file.with_name(f".{policy_file.name}.{uuid.uuid4().hex}.tmp")
        try:
            policy_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(json.dumps(policy.to_dict(), sort_keys=True), encoding="utf-8")
            os.replace(tmp_file, policy_file)
        except OSError as e:
            tmp_file.unlink(missing_ok=True)
            raise StorageBackendError(
                "Failed to write access policy", object_path=path.url, cause=e
            ) from e


def _read_rules(policy: AccessPolicy) -> tuple[AclRule, ...]:
    return tuple(r for r in policy.rules if r.permission == Permission.READ)


def default_category_policies(
    *,
    system_owner: str,
    visibility: Visibility,
    uploader_group: str,
) -> dict[Category, AccessPolicy]:
    """Build the default policy of every category.

    The uploader group may create objects; objects inherit the visibility.
    """
    policy = AccessPolicy(
        owner=system_owner,
        visibility=visibility,
        rules=(
            AclRule(
                principal=Principal(type=PrincipalType.GROUP, id=uploader_group),
                permission=Permission.WRITE,
            ),
        ),
    )
    return {category: policy for category in Category}


class AccessPolicyEngine:
    """Evaluates access policies for object operations."""

    def __init__(
        self,
        policy_store: PolicyStore,
        category_defaults: Mapping[Category, AccessPolicy],
        group_resolver: GroupMembershipResolver | None = None,
    ) -> None:
        self._store = policy_store
        self._defaults = dict(category_defaults)
        self._groups = group_resolver or StaticGroupResolver()

    @property
    def policy_store(self) -> PolicyStore:
        """Return the policy store."""
        return self._store

    def category_default(self, category: Category) -> AccessPolicy | None:
        """Return the default policy of a category."""
        return self._defaults.get(category)

    def effective_policy(
        self, path: ObjectPath, operation: Permission = Permission.READ
    ) -> AccessPolicy | None:
        """Attached policy of the object, else the one derived from the category default.

        Writes on a path without a policy use the category default as is. Reads
        use it as private with only its read rules, so a path with no object
        behaves exactly like a private object toward a requester without rights.
        """
        attached = self._store.get_policy(path)
        if attached is not None:
            return attached
        default = self._defaults.get(path.category)
        if default is None or operation == Permission.WRITE:
            return default
        return replace(default, visibility=Visibility.PRIVATE, rules=_read_rules(default))

    def has_attached_policy(self, path: ObjectPath) -> bool:
        """True if the object carries its own policy."""
        return self._store.get_policy(path) is not None

    def _principal_matches(self, principal: Principal, identity: str) -> bool:
        if principal.type == PrincipalType.USER:
            return principal.id == identity
        return self._groups.is_member(principal.id, identity)

    def evaluate(
        self,
        policy: AccessPolicy | None,
        requester: str | None,
        operation: Permission,
    ) -> AccessDecision:
        """Evaluate a policy for one requester and operation."""
        identity = (requester or "").strip()

        if policy is not None and operation == Permission.READ:
            if policy.visibility == Visibility.PUBLIC:
                return AccessDecision(
                    allow=True,
                    code=AccessDecisionCode.ALLOWED_PUBLIC,
                    message="Public object",
                )

        if not identity:
            return AccessDecision(
                allow=False,
                code=AccessDecisionCode.DENIED_NO_IDENTITY,
                message="Access denied",
            )

        if policy is None:
            return AccessDecision(
                allow=False,
                code=AccessDecisionCode.DENIED_NO_MATCH,
                message="Access denied",
            )

        if identity == policy.owner:
            return AccessDecision(
                allow=True,
                code=AccessDecisionCode.ALLOWED_OWNER,
                message="Access granted to owner",
            )

        for rule in policy.rules:
            if not self._principal_matches(rule.principal, identity):
                continue
            if rule.grants(operation):
                return AccessDecision(
                    allow=True,
                    code=AccessDecisionCode.ALLOWED_RULE,
                    message="Access granted via rule",
                )
            return AccessDecision(
                allow=False,
                code=AccessDecisionCode.DENIED_RULE,
                message="Access denied",
            )

        return AccessDecision(
            allow=False,
            code=AccessDecisionCode.DENIED_NO_MATCH,
            message="Access denied",
        )

    def authorize(
        self,
        path: ObjectPath,
        requester: str | None,
        operation: Permission,
    ) -> AccessDecision:
        """Authorize an operation on an object.

        Uses the attached policy, or the category default for objects that
        carry none (including paths with no object yet). See effective_policy
        for how reads treat the default.
        """
        decision = self.evaluate(self.effective_policy(path, operation), requester, operation)
        logger.debug(
            "ACL %s on %s: %s",
            operation.value,
            path.url,
            decision.code.value,
        )
        return decision

    def attach_policy_for_new_object(self, path: ObjectPath, owner: str) -> AccessPolicy:
        """Attach a policy derived from the category default.

        The uploader becomes the owner. Write rules of the default govern
        creation only and are not carried onto the object.
        """
        default = self._defaults.get(path.category)
        if default is None:
            policy = AccessPolicy(owner=owner)
        else:
            policy = replace(default, owner=owner, rules=_read_rules(default))
        self._store.set_policy(path, policy)
        return policy
