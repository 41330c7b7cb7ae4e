"""API routes for the poster wall server."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from time import time
from typing import Any, Dict, Optional

import psutil
from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import JSONResponse, Response

from .. import config, models, utils
from ..services import wall as wall_service
from ..services.feed import LocalWallFeed, WallFeed
from ..services.library import LibrarySampler
from ..services.plex import PlexClient
from ..services.streams import StreamProbe

router = APIRouter()
logger = config.logger

start_time = time()

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0'
}


def _wall_feed() -> WallFeed:
    client = PlexClient()
    return LocalWallFeed(StreamProbe(client), LibrarySampler(client))


@router.get('/api/streams')
async def streams(
    request: Request,
    batch: Optional[int] = Query(None),
    seed: Optional[int] = Query(None),
    count: Optional[int] = Query(None),
    session: Optional[str] = Query(None),
    check: Optional[str] = Query(None)
) -> JSONResponse:
    """Active streams plus, when idle or on a check, a sampled batch of library posters."""
    snapshot = await _wall_feed().fetch(
        count=count,
        seed=seed,
        batch=batch,
        session=session,
        check=check is not None
    )
    models.add_log_entry(
        'Request received at /api/streams',
        f'URL: {request.url}, streams: {len(snapshot.active_streams)}, random: {len(snapshot.random_items)}'
    )
    logger.info(
        '[API] /api/streams - %d active, %d random (seed=%s, count=%s)',
        len(snapshot.active_streams),
        len(snapshot.random_items),
        seed,
        count
    )
    return JSONResponse(snapshot.to_payload(), headers=NO_CACHE_HEADERS)


@router.get('/api/wall')
def wall_state() -> JSONResponse:
    """Return the rotation engine's current state."""
    wall = wall_service.get_wall()
    if wall is None:
        return JSONResponse({'status': 'error', 'message': 'Poster wall is not running'}, status_code=503)
    return JSONResponse(wall.engine.snapshot(), headers=NO_CACHE_HEADERS)


@router.get('/api/wall/history')
def wall_history(limit: int = Query(50, ge=1, le=500)) -> JSONResponse:
    return JSONResponse(models.get_display_history(limit=limit))


@router.get('/settings')
def get_settings() -> JSONResponse:
    """Retrieve the wall's tunable settings."""
    return JSONResponse(config.tunable_settings())


@router.post('/settings')
def update_settings(data: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Update and persist one or more wall settings, then apply them to the running wall."""
    unknown = sorted(key for key in data if key not in config.TUNABLE_KEYS)
    if unknown:
        return JSONResponse({'status': 'error', 'message': f"Unknown settings: {', '.join(unknown)}"}, status_code=400)

    coerced: Dict[str, Any] = {}
    for key, raw_value in data.items():
        try:
            value = config.TUNABLE_KEYS[key](raw_value)
        except (TypeError, ValueError):
            return JSONResponse({'status': 'error', 'message': f'Invalid value for {key}'}, status_code=400)
        if isinstance(value, (int, float)) and value <= 0:
            return JSONResponse({'status': 'error', 'message': f'{key} must be positive'}, status_code=400)
        coerced[key] = value

    for key, value in coerced.items():
        config.update_config(key, value)
        models.save_config_entry(key, str(config.tunable_settings()[key]))
    wall_service.apply_settings()
    return JSONResponse({'status': 'success', 'settings': config.tunable_settings()}, status_code=200)


@router.get('/server/log')
def log_view(
    request: Request,
    limit: int = Query(30, ge=1, le=200),
    response_format: str = Query('text', alias='format')
) -> Response:
    """Return recent request log entries."""
    logs = models.get_logs(limit=limit)

    wants_json = 'application/json' in (request.headers.get('accept') or '').lower() or response_format.lower() == 'json'
    if wants_json:
        payload = [
            {
                'id': log.id,
                'timestamp': utils.to_iso_datetime(log.timestamp),
                'context': log.context,
                'info': log.info
            }
            for log in logs
        ]
        return JSONResponse(payload)

    formatted_logs = '\n'.join([f"{log.timestamp} -- [{log.context}] -- {log.info}" for log in logs])
    return Response(content=formatted_logs, media_type='text/plain')


@router.get('/status')
def status_view() -> JSONResponse:
    """Retrieve server health and the wall's current state."""
    uptime_seconds = int(time() - start_time)
    wall = wall_service.get_wall()
    status_data = {
        'server': {
            'uptime': str(timedelta(seconds=uptime_seconds)),
            'cpu_load': psutil.cpu_percent(interval=None),
            'memory_percent': psutil.virtual_memory().percent,
            'current_time': utils.to_iso_datetime(datetime.now(timezone.utc)),
            'plex_configured': bool(config.PLEX_SERVER_URL)
        },
        'wall': wall.engine.snapshot() if wall is not None else None,
        'settings': config.tunable_settings()
    }
    return JSONResponse(status_data)
