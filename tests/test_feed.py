from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from posterwall.services.feed import FeedSnapshot, HttpWallFeed, LocalWallFeed, build_snapshot, clamp_count
from tests.fakes import make_item, make_stream


def _services(streams, sample):
    probe = MagicMock()
    probe.active_streams = AsyncMock(return_value=streams)
    sampler = MagicMock()
    sampler.sample = AsyncMock(return_value=sample)
    return probe, sampler


def test_clamp_count_defaults_and_caps():
    assert clamp_count(None) == 15
    assert clamp_count(500) == 50
    assert clamp_count(0) == 1


@pytest.mark.asyncio
async def test_idle_snapshot_samples_full_batch():
    probe, sampler = _services([], [make_item(1), make_item(2)])

    snapshot = await build_snapshot(probe, sampler, count=20, seed=42, batch=7, session='abc')

    sampler.sample.assert_awaited_once_with(20, 42)
    assert not snapshot.has_streams
    payload = snapshot.to_payload()
    assert payload['random_count'] == 2
    assert payload['stream_count'] == 0
    assert payload['batch'] == 7
    assert payload['session'] == 'abc'
    assert set(payload) >= {'active_streams', 'random_items', 'timestamp', 'has_streams'}


@pytest.mark.asyncio
async def test_streaming_snapshot_skips_sampling_unless_checked():
    probe, sampler = _services([make_stream(1)], [make_item(1)])

    quiet = await build_snapshot(probe, sampler, count=30)
    checked = await build_snapshot(probe, sampler, count=30, check=True)

    assert quiet.random_items == []
    assert sampler.sample.await_count == 1
    assert sampler.sample.await_args.args[0] == 10
    assert checked.has_streams


@pytest.mark.asyncio
async def test_local_feed_never_raises():
    probe, sampler = _services([], [])
    probe.active_streams = AsyncMock(side_effect=RuntimeError('boom'))

    snapshot = await LocalWallFeed(probe, sampler).fetch(count=5)

    assert snapshot.active_streams == [] and snapshot.random_items == []


@pytest.mark.asyncio
async def test_http_feed_reads_remote_endpoint():
    remote = FeedSnapshot(active_streams=[make_stream(1)], random_items=[make_item(2)], batch=3, timestamp=10)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=remote.to_payload())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        feed = HttpWallFeed('http://wall.test/', http_client=http_client)
        snapshot = await feed.fetch(count=12, seed=5, check=True)

    assert seen[0].url.path == '/api/streams'
    assert seen[0].url.params['count'] == '12'
    assert 'check' in seen[0].url.params
    assert snapshot.active_streams == remote.active_streams
    assert snapshot.random_items == remote.random_items
    assert snapshot.batch == 3


@pytest.mark.asyncio
async def test_http_feed_degrades_on_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text='bad gateway')

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        snapshot = await HttpWallFeed('http://wall.test', http_client=http_client).fetch()

    assert snapshot.active_streams == [] and snapshot.random_items == []
