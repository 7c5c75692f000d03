"""photocat FastAPI application factory.

This module provides the create_app() factory for bootstrapping the photocat API.
"""

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from photocat import __version__
from photocat.api.errors import (
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    storage_error_handler,
)
from photocat.api.middleware.request_id import RequestIdMiddleware
from photocat.api.routes.health import router as health_router
from photocat.api.routes.objects import router as objects_router
from photocat.observability.tracing import configure_tracing, instrument_fastapi, instrument_httpx
from photocat.storage.errors import ObjectStorageError
from photocat.storage.gateway import ObjectGateway
from photocat.storage.resolver import build_gateway


def create_app(gateway: ObjectGateway | None = None) -> FastAPI:
    """Create and configure the photocat FastAPI application.

    This factory:
    - Resolves the storage backend once (fails at startup on bad config)
    - Registers the request ID middleware
    - Registers storage and fallback exception handlers
    - Mounts the health and object routers

    Args:
        gateway: Optional ObjectGateway for testing. If None, one is built
            from environment configuration.

    Returns:
        Configured FastAPI application instance.

    Raises:
        ConfigurationError: If storage configuration is unusable.
    """
    app = FastAPI(
        title="photocat",
        description="Photo inventory catalog - object storage API",
        version=__version__,
    )

    configure_tracing()
    instrument_httpx()

    app.state.gateway = gateway if gateway is not None else build_gateway()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    app.add_exception_handler(ObjectStorageError, storage_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(objects_router)

    return app
