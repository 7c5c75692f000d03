"""photocat API middleware package."""

from photocat.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
