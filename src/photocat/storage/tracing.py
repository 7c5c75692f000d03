"""OpenTelemetry tracing for object storage operations.

Span attributes carry the logical object path and the backend name only:
never filesystem paths, bucket names or credentials.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast

from photocat.observability.tracing import is_tracing_enabled

if TYPE_CHECKING:
    from photocat.storage.paths import ObjectPath

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRACER_NAME = "photocat.object_store"


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace storage operations with OpenTelemetry.

    The decorated method must take the ObjectPath as its first argument
    after self.

    Args:
        operation: Operation name (e.g., "put", "get", "exists").

    Returns:
        Decorated function that emits spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, path: ObjectPath, *args: Any, **kwargs: Any) -> Any:
            if not is_tracing_enabled():
                return func(self, path, *args, **kwargs)

            try:
                from opentelemetry import trace
            except ImportError:
                return func(self, path, *args, **kwargs)

            tracer = trace.get_tracer(TRACER_NAME)
            with tracer.start_as_current_span(f"{TRACER_NAME}.{operation}") as span:
                span.set_attribute("photocat.object_path", path.url)
                span.set_attribute("photocat.object_category", path.category.value)
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))
                try:
                    result = func(self, path, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise
                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add size/sha256/content type of the result when present."""
    try:
        from photocat.storage.models import ObjectDownload, StoredObjectMetadata

        if isinstance(result, StoredObjectMetadata):
            span.set_attribute("photocat.object_size_bytes", result.size_bytes)
            span.set_attribute("photocat.object_content_type", result.content_type)
            if result.sha256:
                span.set_attribute("photocat.object_sha256", result.sha256)
        elif isinstance(result, ObjectDownload):
            span.set_attribute("photocat.object_size_bytes", result.size_bytes)
            span.set_attribute("photocat.object_content_type", result.content_type)
        elif isinstance(result, bool):
            span.set_attribute("photocat.object_exists", result)
    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)
