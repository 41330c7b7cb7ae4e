import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from posterwall import config, main, models
from posterwall.routes import api, images
from posterwall.services.feed import FeedSnapshot, WallFeed
from posterwall.services.plex import PlexClient
from posterwall.services.relay import PLACEHOLDER_PNG, ImageRelay, encode_reference
from tests.fakes import make_item, make_stream

client = TestClient(main.app)


class StaticFeed(WallFeed):
    def __init__(self, snapshot: FeedSnapshot):
        self.snapshot = snapshot
        self.calls = []

    async def fetch(self, *, count=None, seed=None, batch=None, session=None, check=False) -> FeedSnapshot:
        self.calls.append({'count': count, 'seed': seed, 'batch': batch, 'session': session, 'check': check})
        return self.snapshot


@pytest.fixture
def restore_settings():
    saved = config.tunable_settings()
    yield
    for key, value in saved.items():
        config.update_config(key, value)
        models.save_config_entry(key, str(value))


@pytest.mark.parametrize('query', ['', '?path=', '?path=%21%21%21'])
def test_proxy_without_valid_path_returns_placeholder(query):
    response = client.get(f'/proxy{query}')

    assert response.status_code == 200
    assert response.content == PLACEHOLDER_PNG
    assert response.headers['content-type'] == 'image/png'
    assert response.headers['cache-control'] == 'no-cache'


def test_proxy_relays_upstream_image_with_cache_headers():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'jpeg-bytes', headers={'content-type': 'image/jpeg'})

    plex = PlexClient('http://plex.test', 'secret', http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with patch.object(images, '_relay', return_value=ImageRelay(plex)):
        response = client.get('/proxy', params={'path': encode_reference('/library/metadata/1/thumb')})

    assert response.status_code == 200
    assert response.content == b'jpeg-bytes'
    assert response.headers['content-type'] == 'image/jpeg'
    assert 'max-age' in response.headers['cache-control']


def test_streams_endpoint_returns_snapshot_payload():
    feed = StaticFeed(FeedSnapshot(active_streams=[make_stream(1)], random_items=[make_item(2)], batch=4))
    with patch.object(api, '_wall_feed', return_value=feed):
        response = client.get('/api/streams', params={'count': 10, 'seed': 3, 'batch': 4, 'check': ''})

    assert response.status_code == 200
    assert response.headers['cache-control'] == 'no-cache, no-store, must-revalidate'
    payload = response.json()
    assert payload['has_streams'] is True
    assert payload['stream_count'] == 1
    assert payload['random_items'][0]['title'] == 'Movie 2'
    assert feed.calls == [{'count': 10, 'seed': 3, 'batch': 4, 'session': None, 'check': True}]


def test_wall_state_unavailable_without_running_wall():
    response = client.get('/api/wall')
    assert response.status_code == 503
    assert client.get('/wall/frame.png').status_code == 503


def test_get_settings_lists_tunables():
    response = client.get('/settings')

    assert response.status_code == 200
    assert set(response.json()) == set(config.TUNABLE_KEYS)


def test_update_settings_applies_and_persists(restore_settings):
    response = client.post('/settings', json={'refresh_threshold': '12', 'display_interval': 6})

    assert response.status_code == 200
    assert response.json()['settings']['refresh_threshold'] == 12
    assert config.REFRESH_THRESHOLD == 12
    assert config.DISPLAY_INTERVAL == 6.0


@pytest.mark.parametrize('body', [
    {'not_a_setting': 1},
    {'display_interval': 'soon'},
    {'batch_size': 0}
])
def test_update_settings_rejects_bad_input(body, restore_settings):
    before = config.tunable_settings()

    response = client.post('/settings', json=body)

    assert response.status_code == 400
    assert response.json()['status'] == 'error'
    assert config.tunable_settings() == before


def test_status_reports_server_and_settings():
    payload = client.get('/status').json()

    assert payload['wall'] is None
    assert 'uptime' in payload['server']
    assert payload['settings']['batch_size'] == config.BATCH_SIZE


def test_server_log_returns_json_entries():
    with patch.object(api, '_wall_feed', return_value=StaticFeed(FeedSnapshot())):
        client.get('/api/streams')

    response = client.get('/server/log', params={'format': 'json', 'limit': 5})

    assert response.status_code == 200
    assert any(entry['context'] == 'Request received at /api/streams' for entry in response.json())


def test_wall_history_lists_recent_displays_newest_first():
    models.record_display('1001', 'Movie 1', 'movie', 'idle')
    models.record_display('1501', 'Movie 501', 'movie', 'streaming')

    history = client.get('/api/wall/history', params={'limit': 2}).json()

    assert [entry['item_key'] for entry in history] == ['1501', '1001']
    assert history[0]['mode'] == 'streaming'


def test_wall_frame_renders_on_the_event_loop():
    loops = []

    def render_png() -> bytes:
        try:
            loops.append(asyncio.get_running_loop())
        except RuntimeError:
            loops.append(None)
        return PLACEHOLDER_PNG

    wall = SimpleNamespace(surface=SimpleNamespace(render_png=render_png))
    with patch.object(images, 'get_wall', return_value=wall):
        response = client.get('/wall/frame.png')

    assert response.status_code == 200
    assert response.headers['content-type'] == 'image/png'
    assert response.headers['cache-control'].startswith('no-store')
    assert response.content == PLACEHOLDER_PNG
    assert len(loops) == 1 and loops[0] is not None
