"""
Offline render endpoint.

Clients post the raw recorded clip and receive the filtered WAV, which
they then upload to storage themselves.
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from voccal.audio.intake import validate_import
from voccal.audio.renderer import OfflineRenderer
from voccal.core.config import settings
from voccal.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_renderer() -> OfflineRenderer:
    """
    Renderer dependency; overridable in tests.

    Each request gets its own renderer, so uploads from different clients
    never reject each other as busy.
    """
    return OfflineRenderer(seed=settings.impulse_seed)


async def read_clip(request: Request, content_type: str) -> bytes:
    """
    Read the request body, enforcing the import limits while streaming.

    A declared Content-Length over the limit is rejected before any of the
    body is read.

    Raises:
        ValidationError: If the type is not audio or the size is out of range
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit():
        validate_import(content_type, int(declared))

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > settings.max_import_bytes:
            validate_import(content_type, len(body))
    validate_import(content_type, len(body))
    return bytes(body)


@router.post("/render")
async def render_clip(
    request: Request,
    filter_id: str = Query(..., description="Catalog id of the voice filter"),
    renderer: OfflineRenderer = Depends(get_renderer)
):
    """
    Apply a voice filter to the request body.

    The body is the encoded clip with an audio/* Content-Type. The identity
    filter returns the body unchanged.
    """
    content_type = request.headers.get("content-type", "")
    body = await read_clip(request, content_type)

    result = await renderer.render_async(body, filter_id, mime_type=content_type)

    headers = {
        "X-Voccal-Filter": result.filter_id,
        "X-Voccal-Bypassed": "true" if result.bypassed else "false",
    }
    if result.channels is not None:
        headers["X-Voccal-Channels"] = str(result.channels)
    if result.duration is not None:
        headers["X-Voccal-Duration"] = f"{result.duration:.3f}"

    return Response(content=result.data, media_type=result.mime_type, headers=headers)
