from __future__ import annotations

import logging
from os import environ, getcwd
from os.path import abspath, isdir, join
from sys import stdout

# Logging Configuration
LOG_LEVEL = environ.get('LOG_LEVEL', 'DEBUG').upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=stdout
)
logger = logging.getLogger('posterWall')

# Pillow dumps PNG chunks at DEBUG; httpx logs every upstream poll.
logging.getLogger('PIL').setLevel(logging.INFO)
logging.getLogger('PIL.PngImagePlugin').setLevel(logging.INFO)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('httpcore').setLevel(logging.WARNING)

logger.info('[Config] loading module')

_TRUE_VALUES = {'true', '1', 't', 'yes', 'on'}

PLEX_SERVER_URL = ''
PLEX_TOKEN = ''
PLEX_REQUEST_TIMEOUT = 30.0
SERVER_PORT = 4567
ENABLE_SSL = False
SERVER_SCHEME = 'http'
SITE_TITLE = 'Posteria'
STATIC_ROOT = 'web'

# Poster wall engine
#
# Intervals are in seconds. The rotation timer advances the idle batch (or the
# active streams when more than one is playing); the probe timer polls the
# media server; the refresh timer forces a fresh idle batch.
WALL_ENABLED = True
# Base URL of another poster-wall server to read streams, batches and images
# from; empty means the in-process feed backed by PLEX_SERVER_URL.
WALL_FEED_URL = ''
DISPLAY_INTERVAL = 8.0
STREAM_CHECK_INTERVAL = 15.0
STREAM_CHECK_DELAY = 5.0
REFRESH_INTERVAL = 600.0
REFRESH_THRESHOLD = 20
BATCH_SIZE = 15
MAX_BATCH_SIZE = 50
RECENTLY_SEEN_WINDOW = 5
PRELOAD_AHEAD = 3

# Tile-flip transition
TILE_ROWS = 12
TILE_COLS = 8
TRANSITION_DURATION = 2.5
TRANSITION_SETTLE = 0.2

# Rendered frame served at /wall/frame.png
FRAME_WIDTH = 1080
FRAME_HEIGHT = 1920

CONFIG_DIR = getcwd()
VAR_ROOT = join(CONFIG_DIR, 'var')
DATABASE_PATH = join(VAR_ROOT, 'db', 'posterwall.db')
LOGS_DIR = join(VAR_ROOT, 'logs')
SSL_DIR = join(VAR_ROOT, 'ssl')
WEB_STATIC_DIR = join(CONFIG_DIR, STATIC_ROOT)

_ENV_OVERRIDES: set[str] = set()


def _env_str(name: str, default: str, config_key: str) -> str:
    value = environ.get(name)
    if value is None:
        return default
    _ENV_OVERRIDES.add(config_key)
    return value


def _env_bool(name: str, default: bool, config_key: str) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    _ENV_OVERRIDES.add(config_key)
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int, config_key: str) -> int:
    value = environ.get(name)
    if value is None:
        return default
    try:
        number = int(value)
        _ENV_OVERRIDES.add(config_key)
        return number
    except ValueError:
        logger.warning('[Config] Invalid int for %s: %s', name, value)
        return default


def _env_float(name: str, default: float, config_key: str) -> float:
    value = environ.get(name)
    if value is None:
        return default
    try:
        number = float(value)
        _ENV_OVERRIDES.add(config_key)
        return number
    except ValueError:
        logger.warning('[Config] Invalid float for %s: %s', name, value)
        return default


def _apply_environment_overrides() -> None:
    global PLEX_SERVER_URL, PLEX_TOKEN, PLEX_REQUEST_TIMEOUT
    global SERVER_PORT, ENABLE_SSL, SITE_TITLE, STATIC_ROOT
    global WALL_ENABLED, WALL_FEED_URL, DISPLAY_INTERVAL, STREAM_CHECK_INTERVAL, STREAM_CHECK_DELAY
    global REFRESH_INTERVAL, REFRESH_THRESHOLD, BATCH_SIZE, RECENTLY_SEEN_WINDOW
    global TILE_ROWS, TILE_COLS, TRANSITION_DURATION, FRAME_WIDTH, FRAME_HEIGHT
    _ENV_OVERRIDES.clear()

    PLEX_SERVER_URL = _env_str('PLEX_SERVER_URL', '', 'plex_server_url').rstrip('/')
    PLEX_TOKEN = _env_str('PLEX_TOKEN', '', 'plex_token')
    PLEX_REQUEST_TIMEOUT = _env_float('PLEX_REQUEST_TIMEOUT', 30.0, 'plex_request_timeout')
    SERVER_PORT = _env_int('SERVER_PORT', 4567, 'server_port')
    ENABLE_SSL = _env_bool('ENABLE_SSL', False, 'enable_ssl')
    SITE_TITLE = _env_str('SITE_TITLE', 'Posteria', 'site_title')
    STATIC_ROOT = _env_str('STATIC_ROOT', 'web', 'static_root')
    WALL_ENABLED = _env_bool('WALL_ENABLED', True, 'wall_enabled')
    WALL_FEED_URL = _env_str('WALL_FEED_URL', '', 'wall_feed_url').rstrip('/')
    DISPLAY_INTERVAL = _env_float('DISPLAY_INTERVAL', 8.0, 'display_interval')
    STREAM_CHECK_INTERVAL = _env_float('STREAM_CHECK_INTERVAL', 15.0, 'stream_check_interval')
    STREAM_CHECK_DELAY = _env_float('STREAM_CHECK_DELAY', 5.0, 'stream_check_delay')
    REFRESH_INTERVAL = _env_float('REFRESH_INTERVAL', 600.0, 'refresh_interval')
    REFRESH_THRESHOLD = _env_int('REFRESH_THRESHOLD', 20, 'refresh_threshold')
    BATCH_SIZE = _env_int('BATCH_SIZE', 15, 'batch_size')
    RECENTLY_SEEN_WINDOW = _env_int('RECENTLY_SEEN_WINDOW', 5, 'recently_seen_window')
    TILE_ROWS = _env_int('TILE_ROWS', 12, 'tile_rows')
    TILE_COLS = _env_int('TILE_COLS', 8, 'tile_cols')
    TRANSITION_DURATION = _env_float('TRANSITION_DURATION', 2.5, 'transition_duration')
    FRAME_WIDTH = _env_int('FRAME_WIDTH', 1080, 'frame_width')
    FRAME_HEIGHT = _env_int('FRAME_HEIGHT', 1920, 'frame_height')
    _refresh_server_scheme()


def _refresh_server_scheme() -> None:
    global SERVER_SCHEME
    SERVER_SCHEME = 'https' if ENABLE_SSL else 'http'


def _refresh_path_constants() -> None:
    global VAR_ROOT, DATABASE_PATH, LOGS_DIR, SSL_DIR, WEB_STATIC_DIR
    VAR_ROOT = join(CONFIG_DIR, 'var')
    DATABASE_PATH = join(VAR_ROOT, 'db', 'posterwall.db')
    LOGS_DIR = join(VAR_ROOT, 'logs')
    SSL_DIR = join(VAR_ROOT, 'ssl')
    WEB_STATIC_DIR = join(CONFIG_DIR, STATIC_ROOT)


def load_config(base_dir: str | None = None) -> None:
    """Apply environment overrides and update path constants for the provided base directory."""
    global CONFIG_DIR
    _apply_environment_overrides()
    if base_dir:
        candidate = abspath(base_dir)
        if not isdir(candidate):
            logger.warning('[Config] Provided base_dir %s is not a directory; using current working directory', base_dir)
            candidate = getcwd()
        CONFIG_DIR = candidate
    else:
        CONFIG_DIR = getcwd()
    _refresh_path_constants()


def _coerce_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


# Keys that may be changed at runtime through /settings, with their coercion.
TUNABLE_KEYS = {
    'site_title': str,
    'display_interval': float,
    'stream_check_interval': float,
    'refresh_interval': float,
    'refresh_threshold': int,
    'batch_size': int,
    'recently_seen_window': int,
    'tile_rows': int,
    'tile_cols': int,
    'transition_duration': float
}


def update_config(key: str, value) -> None:
    """Update an in-memory configuration value."""
    global PLEX_SERVER_URL, PLEX_TOKEN, PLEX_REQUEST_TIMEOUT
    global SERVER_PORT, ENABLE_SSL, SITE_TITLE, STATIC_ROOT
    global WALL_ENABLED, WALL_FEED_URL, DISPLAY_INTERVAL, STREAM_CHECK_INTERVAL, STREAM_CHECK_DELAY
    global REFRESH_INTERVAL, REFRESH_THRESHOLD, BATCH_SIZE, RECENTLY_SEEN_WINDOW
    global TILE_ROWS, TILE_COLS, TRANSITION_DURATION, FRAME_WIDTH, FRAME_HEIGHT

    logger.info('[Config] Updating %s to %s', key, 'REDACTED' if key == 'plex_token' else value)

    if key == 'plex_server_url':
        PLEX_SERVER_URL = str(value).rstrip('/')
    elif key == 'plex_token':
        PLEX_TOKEN = str(value)
    elif key == 'plex_request_timeout':
        PLEX_REQUEST_TIMEOUT = float(value)
    elif key == 'server_port':
        SERVER_PORT = int(value)
    elif key == 'enable_ssl':
        ENABLE_SSL = _coerce_bool(value)
        _refresh_server_scheme()
    elif key == 'site_title':
        SITE_TITLE = str(value)
    elif key == 'static_root':
        STATIC_ROOT = str(value)
        _refresh_path_constants()
    elif key == 'wall_enabled':
        WALL_ENABLED = _coerce_bool(value)
    elif key == 'wall_feed_url':
        WALL_FEED_URL = str(value).rstrip('/')
    elif key == 'display_interval':
        DISPLAY_INTERVAL = float(value)
    elif key == 'stream_check_interval':
        STREAM_CHECK_INTERVAL = float(value)
    elif key == 'stream_check_delay':
        STREAM_CHECK_DELAY = float(value)
    elif key == 'refresh_interval':
        REFRESH_INTERVAL = float(value)
    elif key == 'refresh_threshold':
        REFRESH_THRESHOLD = int(value)
    elif key == 'batch_size':
        BATCH_SIZE = max(1, min(int(value), MAX_BATCH_SIZE))
    elif key == 'recently_seen_window':
        RECENTLY_SEEN_WINDOW = max(1, int(value))
    elif key == 'tile_rows':
        TILE_ROWS = max(1, int(value))
    elif key == 'tile_cols':
        TILE_COLS = max(1, int(value))
    elif key == 'transition_duration':
        TRANSITION_DURATION = float(value)
    elif key == 'frame_width':
        FRAME_WIDTH = int(value)
    elif key == 'frame_height':
        FRAME_HEIGHT = int(value)
    else:
        logger.warning('[Config] Unknown config key: %s', key)


def apply_persisted_config(entries: dict[str, str]) -> None:
    """Apply database-backed configuration entries unless overridden by env vars."""
    for key, raw_value in entries.items():
        if key in _ENV_OVERRIDES:
            continue
        update_config(key, raw_value)


def tunable_settings() -> dict[str, object]:
    """Return the runtime-adjustable wall settings keyed by config name."""
    return {key: globals()[key.upper()] for key in TUNABLE_KEYS}


_apply_environment_overrides()
_refresh_path_constants()
