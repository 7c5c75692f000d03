"""Object routes for the photocat API.

- POST /v1/objects/{category} (uploadObject): multipart field "file"
- GET /objects/{object_path} (serveObject): streamed image bytes

The requester identity is taken from X-Actor-Id. Authentication happens
upstream of this service.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from photocat.api.error_model import OBJECT_ERROR_RESPONSES, UPLOAD_ERROR_RESPONSES
from photocat.storage.gateway import ObjectGateway
from photocat.storage.paths import MAX_IMAGE_INDEX, OBJECTS_PREFIX, Category

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Objects"])

ACTOR_HEADER = "X-Actor-Id"


class UploadResponse(BaseModel):
    """Response body for POST /v1/objects/{category}."""

    path: str
    content_type: str
    size_bytes: int


def _gateway(request: Request) -> ObjectGateway:
    gateway: ObjectGateway = request.app.state.gateway
    return gateway


@router.post(
    "/v1/objects/{category}",
    status_code=201,
    response_model=UploadResponse,
    responses=UPLOAD_ERROR_RESPONSES,
)
def upload_object(
    category: str,
    request: Request,
    file: Annotated[UploadFile, File()],
    actor_id: Annotated[str | None, Header(alias=ACTOR_HEADER)] = None,
    item_id: Annotated[str | None, Query()] = None,
    index: Annotated[int | None, Query(ge=0, le=MAX_IMAGE_INDEX)] = None,
) -> UploadResponse:
    """Upload one image.

    The stored extension comes from the sniffed bytes, not the filename.
    Pass item_id and index to store one of several images of an item.
    """
    try:
        parsed_category = Category(category)
    except ValueError as e:
        raise HTTPException(status_code=404, detail="Unknown category") from e

    metadata = _gateway(request).create(
        file.file,
        file.content_type,
        file.size,
        actor_id,
        category=parsed_category,
        item_id=item_id,
        index=index,
    )
    return UploadResponse(
        path=metadata.path.url,
        content_type=metadata.content_type,
        size_bytes=metadata.size_bytes,
    )


@router.get("/objects/{object_path:path}", responses=OBJECT_ERROR_RESPONSES)
def serve_object(
    object_path: str,
    request: Request,
    actor_id: Annotated[str | None, Header(alias=ACTOR_HEADER)] = None,
) -> StreamingResponse:
    """Stream a stored image.

    Query strings (e.g. cache-busting revisions) are not part of the path.
    """
    gateway = _gateway(request)
    download = gateway.open(f"{OBJECTS_PREFIX}{object_path}", actor_id)
    try:
        cache_control = gateway.cache_control(download.path)
    except Exception:
        download.close()
        raise

    return StreamingResponse(
        download,
        media_type=download.content_type,
        headers={
            "Content-Length": str(download.size_bytes),
            "Cache-Control": cache_control,
        },
        background=BackgroundTask(download.close),
    )
