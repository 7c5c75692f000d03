"""OpenTelemetry tracing configuration for photocat.

Environment Variables:
    PHOTOCAT_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    PHOTOCAT_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    PHOTOCAT_OTEL_SERVICE_NAME: Service name for spans (default: "photocat")
    PHOTOCAT_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "otlp")
    PHOTOCAT_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    PHOTOCAT_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter for tests

Never export credentials, Authorization headers, request bodies or local
filesystem paths as span attributes.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and PHOTOCAT_REQUIRE_OTEL=1."""


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def _get_env_str(key: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default).strip()


def is_tracing_enabled() -> bool:
    """Check if OpenTelemetry tracing is enabled."""
    return _get_env_bool("PHOTOCAT_OTEL_ENABLED", False)


def _create_otlp_exporter(endpoint: str | None) -> Any:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    kwargs: dict[str, Any] = {}
    if endpoint:
        kwargs["endpoint"] = endpoint
    return OTLPSpanExporter(**kwargs)


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If PHOTOCAT_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    if not is_tracing_enabled():
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (PHOTOCAT_OTEL_ENABLED not set)")
        return False

    test_capture = _get_env_bool("PHOTOCAT_OTEL_TEST_CAPTURE", False)
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )

        service_name = _get_env_str("PHOTOCAT_OTEL_SERVICE_NAME", "photocat")
        exporter_type = _get_env_str("PHOTOCAT_OTEL_EXPORTER", "otlp")

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            endpoint = _get_env_str("PHOTOCAT_OTEL_EXPORTER_OTLP_ENDPOINT") or None
            provider.add_span_processor(BatchSpanProcessor(_create_otlp_exporter(endpoint)))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if _get_env_bool("PHOTOCAT_REQUIRE_OTEL", False):
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application with OpenTelemetry."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_httpx() -> None:
    """Instrument httpx clients (sidecar and blob API calls)."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.debug("httpx instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument httpx: %s", e)


def get_current_trace_id() -> str | None:
    """Get the current trace ID for logging correlation.

    Returns:
        Hex string of current trace ID, or None if no active span.
    """
    try:
        from opentelemetry import trace
    except ImportError:
        return None

    ctx = trace.get_current_span().get_span_context()
    if ctx is None or not ctx.is_valid:
        return None
    return format(ctx.trace_id, "032x")


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    """Clear captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Reset tracing configuration (for testing).

    The global TracerProvider cannot be replaced once set, so the test
    exporter is kept and only its spans are cleared.
    """
    global _is_configured

    clear_test_spans()
    _is_configured = False
