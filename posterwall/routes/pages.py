"""Page routes for the poster wall server."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import HTMLResponse

from .. import config, utils

router = APIRouter()


@router.get('/')
def index() -> HTMLResponse:
    """Serve the full-screen wall page."""
    index_path = utils.asset_path('index.html')
    try:
        with open(index_path, 'r', encoding='utf-8') as file:
            page = file.read()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail='index.html not found') from exc
    return HTMLResponse(page.replace('{{ site_title }}', config.SITE_TITLE))
