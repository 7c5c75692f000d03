"""Health check endpoint for the photocat API."""

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from photocat import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    time: str
    version: str


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    """Health check endpoint.

    Does not name the storage backend; operators use `photocat storage check`.
    """
    return HealthResponse(
        status="ok",
        time=datetime.now(UTC).isoformat(),
        version=__version__,
    )
