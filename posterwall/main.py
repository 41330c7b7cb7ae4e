#! /usr/bin/env python
"""FastAPI entrypoint and CLI tooling for the poster wall server."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.staticfiles import StaticFiles

from . import config, models, utils
from .routes import api_router, image_router, page_router
from .services import wall
from .services.library import LibrarySampler
from .services.streams import StreamProbe

###################################################################################################

logger = config.logger
logger.info('[Main] Starting posterWall')

API_LOG_PATH_PREFIXES = ('/api',)
MAX_REQUEST_LOG_BODY = 2048
MAX_RESPONSE_LOG_BODY = 2048
BINARY_CONTENT_PREFIXES = (
    'application/octet-stream',
    'image/'
)

BASE_PATH = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), os.pardir))
STATIC_MOUNT_PATH: Optional[str] = None


def should_log_request(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in API_LOG_PATH_PREFIXES)


def _truncate_body(body: bytes, limit: int) -> str:
    if not body:
        return '<empty>'
    text = body.decode('utf-8', errors='replace')
    if len(text) > limit:
        return f"{text[:limit]}...<truncated>"
    return text


def is_binary_content_type(content_type: str) -> bool:
    lowered = (content_type or '').lower()
    return any(lowered.startswith(prefix) for prefix in BINARY_CONTENT_PREFIXES)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    logger.info('Starting poster wall')
    await wall.start_wall()
    yield
    logger.info('Stopping poster wall')
    await wall.stop_wall()


app = FastAPI(lifespan=lifespan)


@app.middleware('http')
async def log_api_request(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    log_this_request = should_log_request(request.url.path)
    if log_this_request:
        body_bytes = await request.body()
        logger.info(
            '[RequestDump] method=%s path=%s query=%s body=%s',
            request.method,
            request.url.path,
            dict(request.query_params),
            _truncate_body(body_bytes, MAX_REQUEST_LOG_BODY)
        )
    response = await call_next(request)
    if log_this_request:
        content_type = response.headers.get('content-type', '')
        if not is_binary_content_type(content_type):
            response_body_chunks = [chunk async for chunk in response.body_iterator]
            response_body = b''.join(response_body_chunks)
            logger.debug(
                '[ResponseDump] path=%s status=%s content_type=%s body=%s',
                request.url.path,
                response.status_code,
                content_type,
                _truncate_body(response_body, MAX_RESPONSE_LOG_BODY)
            )
            return Response(
                content=response_body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
                background=response.background
            )
    return response
app.include_router(image_router)
app.include_router(api_router)
app.include_router(page_router)


def _parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Poster wall server')
    parser.add_argument('workdir', nargs='?', help='Runtime working directory', default=None)
    parser.add_argument('--probe', action='store_true', help='Print the active streams as JSON and exit')
    parser.add_argument('--sample', metavar='COUNT', type=int, help='Print a sampled idle batch as JSON and exit')
    parser.add_argument('--seed', metavar='N', type=int, default=None, help='Seed for --sample')
    return parser.parse_args(argv)


def _resolve_workdir(candidate: Optional[str]) -> str:
    if not candidate:
        return BASE_PATH
    if not os.path.isdir(candidate):
        print(f"Path {candidate} is not a directory. Using default path {BASE_PATH}.")
        return BASE_PATH
    return candidate


def _ensure_static_mounts() -> None:
    global STATIC_MOUNT_PATH
    if STATIC_MOUNT_PATH == config.WEB_STATIC_DIR:
        return
    # Remove the existing mount so a new directory is reflected
    app.router.routes = [
        route for route in app.router.routes
        if getattr(route, 'name', None) != 'web-static'
    ]
    app.mount('/web', StaticFiles(directory=config.WEB_STATIC_DIR), name='web-static')
    STATIC_MOUNT_PATH = config.WEB_STATIC_DIR


def _prepare_runtime(current_dir: str) -> str:
    config.load_config(current_dir)
    os.makedirs(config.VAR_ROOT, exist_ok=True)
    os.makedirs(os.path.dirname(config.DATABASE_PATH), exist_ok=True)
    models.init_db()
    config.apply_persisted_config(models.load_config_entries())

    for path in (config.LOGS_DIR, config.SSL_DIR, config.WEB_STATIC_DIR):
        os.makedirs(path, exist_ok=True)

    server_ip = utils.get_ip_address()
    logger.info(
        'Server will be running on IP: %s and port: %s (scheme: %s)',
        server_ip,
        config.SERVER_PORT,
        config.SERVER_SCHEME
    )
    _ensure_static_mounts()
    return server_ip


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _probe_command() -> List[dict]:
    streams = await StreamProbe().active_streams()
    return [item.to_wire() for item in streams]


async def _sample_command(count: int, seed: Optional[int]) -> List[dict]:
    items = await LibrarySampler().sample(count, seed)
    return [item.to_wire() for item in items]


def _start_http_server(server_ip: str) -> None:
    if config.ENABLE_SSL:
        cert_file = os.path.join(config.SSL_DIR, 'cert.pem')
        key_file = os.path.join(config.SSL_DIR, 'key.pem')

        if not os.path.exists(cert_file) or not os.path.exists(key_file):
            logger.debug('[Main] cert.pem and key.pem not found, generating new ones')
            os.system(
                f'openssl req -x509 -newkey rsa:4096 -keyout {key_file} -out {cert_file} '
                f'-days 365 -nodes '
                f'-subj "/C=US/ST=Georgia/L=Atlanta/O=posterWall/OU=webapp/CN={server_ip}"'
            )

        logger.debug('[Main] Starting the server with uvicorn and SSL')
        uvicorn.run(
            app,
            host='0.0.0.0',
            port=config.SERVER_PORT,
            ssl_keyfile=key_file,
            ssl_certfile=cert_file,
            log_level='info'
        )
    else:
        logger.debug('[Main] Starting the server without SSL')
        uvicorn.run(
            app,
            host='0.0.0.0',
            port=config.SERVER_PORT,
            log_level='info'
        )


_prepare_runtime(BASE_PATH)


def run() -> None:
    args = _parse_cli_args(sys.argv[1:])
    current_dir = _resolve_workdir(args.workdir)
    server_ip = _prepare_runtime(current_dir)

    if args.probe:
        _print_json(asyncio.run(_probe_command()))
        return

    if args.sample is not None:
        if args.sample <= 0:
            logger.error('--sample expects a positive count')
            sys.exit(2)
        _print_json(asyncio.run(_sample_command(args.sample, args.seed)))
        return

    _start_http_server(server_ip)


if __name__ == '__main__':
    run()
