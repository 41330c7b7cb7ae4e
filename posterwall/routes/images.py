"""Image-serving routes: the artwork relay and the composited wall frame."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from .. import config
from ..services.relay import CACHE_CONTROL, PLACEHOLDER_CACHE_CONTROL, PROXY_PATH, ImageRelay, RelayedImage
from ..services.wall import get_wall

router = APIRouter()
logger = config.logger

NO_STORE = 'no-store, no-cache, must-revalidate, max-age=0'


def _relay() -> ImageRelay:
    return ImageRelay()


def _binary_response(payload: bytes, media_type: str, cache_control: str) -> Response:
    headers = {'Content-Length': str(len(payload)), 'Cache-Control': cache_control}
    return Response(content=payload, media_type=media_type, headers=headers)


def _relayed_response(image: RelayedImage) -> Response:
    cache_control = PLACEHOLDER_CACHE_CONTROL if image.placeholder else CACHE_CONTROL
    return _binary_response(image.content, image.content_type, cache_control)


@router.get(PROXY_PATH)
async def proxy_image(path: Optional[str] = Query(None)) -> Response:
    """Relay a media-server image; always answers 200, with a transparent pixel on failure."""
    image = await _relay().fetch(path)
    return _relayed_response(image)


@router.get('/wall/frame.png')
async def wall_frame() -> Response:
    """Render the wall as it currently looks.

    Runs on the event loop so the frame is never drawn while the engine is
    mutating the surface.
    """
    wall = get_wall()
    if wall is None:
        raise HTTPException(status_code=503, detail='Poster wall is not running')
    return _binary_response(wall.surface.render_png(), 'image/png', NO_STORE)
