import base64
from typing import List

import httpx
import pytest

from posterwall.services.plex import PlexClient
from posterwall.services.relay import (
    PLACEHOLDER_PNG,
    ImageRelay,
    decode_reference,
    encode_reference,
    proxy_url,
    reference_from_proxy_url,
    relay_loader,
    remote_loader
)

JPEG_BYTES = b'\xff\xd8\xff\xe0fake-jpeg'


def _relay(requests: List[httpx.Request], status: int = 200, content: bytes = JPEG_BYTES) -> ImageRelay:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, content=content, headers={'content-type': 'image/jpeg'})

    client = PlexClient('http://plex.test', 'secret', http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    return ImageRelay(client)


def test_decode_accepts_standard_and_url_safe_base64():
    reference = '/library/metadata/1/thumb/1699999999?width=500&height=750'
    standard = base64.b64encode(reference.encode()).decode()
    assert decode_reference(standard) == reference
    assert decode_reference(encode_reference(reference)) == reference
    assert decode_reference(standard.rstrip('=')) == reference


@pytest.mark.parametrize('encoded', [None, '', '   ', '!!!not-base64!!!'])
def test_decode_rejects_missing_or_invalid(encoded):
    assert decode_reference(encoded) is None


def test_proxy_url_round_trip():
    url = proxy_url('/library/metadata/5/art')
    assert url.startswith('/proxy?path=')
    assert reference_from_proxy_url(url) == '/library/metadata/5/art'
    assert proxy_url('') == ''


@pytest.mark.asyncio
async def test_relative_reference_is_resolved_with_token():
    requests: List[httpx.Request] = []
    image = await _relay(requests).fetch(encode_reference('/library/metadata/5/thumb'))

    assert image.content == JPEG_BYTES
    assert image.content_type == 'image/jpeg'
    assert not image.placeholder
    assert str(requests[0].url).startswith('http://plex.test/library/metadata/5/thumb')
    assert requests[0].url.params['X-Plex-Token'] == 'secret'


@pytest.mark.asyncio
async def test_absolute_reference_keeps_existing_token():
    requests: List[httpx.Request] = []
    await _relay(requests).fetch(encode_reference('http://other.test/photo.jpg?X-Plex-Token=abc'))

    assert requests[0].url.host == 'other.test'
    assert requests[0].url.params.get_list('X-Plex-Token') == ['abc']


@pytest.mark.asyncio
@pytest.mark.parametrize('encoded', [None, '', 'bm9wZQ'])
async def test_missing_reference_or_upstream_error_returns_placeholder(encoded):
    requests: List[httpx.Request] = []
    image = await _relay(requests, status=404).fetch(encoded)

    assert image.placeholder
    assert image.content == PLACEHOLDER_PNG
    assert image.content_type == 'image/png'


@pytest.mark.asyncio
async def test_loader_resolves_proxy_urls_and_hides_placeholders():
    requests: List[httpx.Request] = []
    loader = relay_loader(_relay(requests))
    assert await loader(proxy_url('/library/metadata/9/thumb')) == JPEG_BYTES
    assert await loader('/proxy') is None

    failing = relay_loader(_relay([], status=500))
    assert await failing(proxy_url('/library/metadata/9/thumb')) is None


@pytest.mark.asyncio
async def test_token_is_only_sent_to_the_media_server():
    requests: List[httpx.Request] = []
    relay = _relay(requests)

    await relay.fetch(encode_reference('https://images.example.test/poster.jpg'))
    await relay.fetch(encode_reference('http://plex.test/library/metadata/7/thumb'))

    assert 'X-Plex-Token' not in requests[0].url.params
    assert requests[1].url.params['X-Plex-Token'] == 'secret'
    assert relay.client.is_server_url('http://PLEX.test/photo') is True


@pytest.mark.asyncio
async def test_remote_loader_reads_relay_of_another_wall():
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        reference = decode_reference(request.url.params.get('path'))
        if reference == '/library/metadata/1/thumb':
            return httpx.Response(200, content=JPEG_BYTES, headers={'cache-control': 'public, max-age=3600'})
        if reference == '/library/metadata/2/thumb':
            return httpx.Response(200, content=PLACEHOLDER_PNG, headers={'cache-control': 'no-cache'})
        return httpx.Response(503)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        loader = remote_loader('http://wall.test/', http_client=http_client)
        found = await loader(proxy_url('/library/metadata/1/thumb'))
        placeholder = await loader(proxy_url('/library/metadata/2/thumb'))
        failing = await loader(proxy_url('/library/metadata/3/thumb'))
        foreign = await loader('http://elsewhere.test/image.jpg')

    assert found == JPEG_BYTES
    assert placeholder is None and failing is None and foreign is None
    assert str(requests[0].url).startswith('http://wall.test/proxy?path=')
    assert len(requests) == 3
