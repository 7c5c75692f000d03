"""Logical object paths.

An ObjectPath is the backend-agnostic identifier for a stored image:

    /objects/{category}/{id}.{ext}            single image
    /objects/{category}/{id}/{index}.{ext}    one of several images of an item

Components are validated on construction, so any ObjectPath instance is safe
to join onto a storage root or a bucket prefix.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from enum import StrEnum

from photocat.storage.errors import InvalidObjectPathError, PathTraversalError

OBJECTS_PREFIX = "/objects/"

_UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
_INDEX_PATTERN = re.compile(r"^[0-9]{1,2}$")

MAX_IMAGE_INDEX = 99


class Category(StrEnum):
    """Fixed set of object categories."""

    ITEMS = "items"


EXTENSION_CONTENT_TYPES: dict[str, str] = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}

_EXTENSION_ALIASES: dict[str, str] = {"jpeg": "jpg"}


def content_type_for_extension(ext: str) -> str:
    """Return the content type for a canonical extension."""
    try:
        return EXTENSION_CONTENT_TYPES[ext]
    except KeyError as e:
        raise InvalidObjectPathError(f"Unsupported extension: {ext}") from e


def _has_traversal_markers(raw: str) -> bool:
    if "\x00" in raw or "\\" in raw:
        return True
    if raw.startswith("~") or (len(raw) >= 2 and raw[1] == ":"):
        return True
    return any(segment in ("..", ".") for segment in raw.split("/"))


@dataclass(frozen=True, slots=True)
class ObjectPath:
    """Validated logical object identifier.

    Attributes:
        category: Object category.
        object_id: UUID-shaped token, lower case.
        ext: Canonical extension (jpg, png, webp).
        index: Image index for multi-image items, or None.
    """

    category: Category
    object_id: str
    ext: str
    index: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.category, Category):
            object.__setattr__(self, "category", _parse_category(self.category))

        if not isinstance(self.object_id, str) or _has_traversal_markers(self.object_id):
            raise PathTraversalError()
        if "/" in self.object_id or not _UUID_PATTERN.match(self.object_id):
            raise InvalidObjectPathError("Object id must be a UUID")
        object.__setattr__(self, "object_id", self.object_id.lower())

        ext = _EXTENSION_ALIASES.get(self.ext.lower(), self.ext.lower())
        if ext not in EXTENSION_CONTENT_TYPES:
            raise InvalidObjectPathError(f"Unsupported extension: {self.ext!r}")
        object.__setattr__(self, "ext", ext)

        if self.index is not None and not (0 <= self.index <= MAX_IMAGE_INDEX):
            raise InvalidObjectPathError("Image index out of range")

    @classmethod
    def new(cls, category: Category, ext: str, *, index: int | None = None) -> ObjectPath:
        """Create a path with a freshly generated id."""
        return cls(category=category, object_id=str(uuid.uuid4()), ext=ext, index=index)

    @classmethod
    def parse(cls, raw: str) -> ObjectPath:
        """Parse a logical path, with or without the /objects/ prefix.

        Raises:
            PathTraversalError: If the string carries traversal markers.
            InvalidObjectPathError: If the string does not match the path shape.
        """
        if not raw or _has_traversal_markers(raw):
            raise PathTraversalError()

        relative = raw[len(OBJECTS_PREFIX):] if raw.startswith(OBJECTS_PREFIX) else raw
        if relative.startswith("/"):
            raise PathTraversalError()

        parts = relative.split("/")
        if len(parts) == 2:
            category, filename = parts
            object_id, ext = _split_extension(filename)
            return cls(category=_parse_category(category), object_id=object_id, ext=ext)
        if len(parts) == 3:
            category, object_id, filename = parts
            index_str, ext = _split_extension(filename)
            if not _INDEX_PATTERN.match(index_str):
                raise InvalidObjectPathError("Image index must be numeric")
            return cls(
                category=_parse_category(category),
                object_id=object_id,
                ext=ext,
                index=int(index_str),
            )
        raise InvalidObjectPathError("Object path must be {category}/{id}.{ext}")

    @property
    def content_type(self) -> str:
        """Content type derived from the extension."""
        return EXTENSION_CONTENT_TYPES[self.ext]

    @property
    def key(self) -> str:
        """Relative key, e.g. items/{id}.jpg or items/{id}/0.jpg."""
        if self.index is None:
            return f"{self.category.value}/{self.object_id}.{self.ext}"
        return f"{self.category.value}/{self.object_id}/{self.index}.{self.ext}"

    @property
    def segments(self) -> tuple[str, ...]:
        """Key split into path segments."""
        return tuple(self.key.split("/"))

    @property
    def url(self) -> str:
        """Logical URL form served by the HTTP layer."""
        return f"{OBJECTS_PREFIX}{self.key}"

    def __str__(self) -> str:
        return self.url


def _parse_category(value: str) -> Category:
    try:
        return Category(value)
    except ValueError as e:
        raise InvalidObjectPathError(f"Unknown category: {value!r}") from e


def _split_extension(filename: str) -> tuple[str, str]:
    stem, dot, ext = filename.rpartition(".")
    if not dot or not stem or not ext:
        raise InvalidObjectPathError("Object path is missing an extension")
    return stem, ext
