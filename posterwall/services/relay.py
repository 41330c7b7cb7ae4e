"""Image relay: fetch media-server artwork on behalf of the wall."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import parse_qs, quote, urlparse

import httpx

from .. import config
from ..items import Item
from .plex import PlexClient, PlexUnavailableError

logger = config.logger

PROXY_PATH = '/proxy'
CACHE_CONTROL = 'public, max-age=3600'
# Placeholders must not be cached for an hour; the upstream may recover.
PLACEHOLDER_CACHE_CONTROL = 'no-cache'

# 1x1 transparent PNG returned whenever the upstream image cannot be served.
PLACEHOLDER_PNG = base64.b64decode(
    'iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII='
)

ImageLoader = Callable[[str], Awaitable[Optional[bytes]]]


@dataclass(frozen=True)
class RelayedImage:
    content: bytes
    content_type: str
    placeholder: bool = False


def placeholder_image() -> RelayedImage:
    return RelayedImage(content=PLACEHOLDER_PNG, content_type='image/png', placeholder=True)


def encode_reference(reference: str) -> str:
    return base64.urlsafe_b64encode(reference.encode('utf-8')).decode('ascii')


def decode_reference(encoded: Optional[str]) -> Optional[str]:
    """Decode a standard or URL-safe base64 image reference; ``None`` when invalid."""
    raw = (encoded or '').strip().replace(' ', '+')
    if not raw:
        return None
    raw += '=' * (-len(raw) % 4)
    altchars = b'-_' if ('-' in raw or '_' in raw) else None
    try:
        decoded = base64.b64decode(raw, altchars=altchars, validate=True).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    decoded = decoded.strip()
    return decoded or None


def proxy_url(reference: str) -> str:
    """Return the relay URL for a media-server image reference, or '' when absent."""
    if not reference:
        return ''
    return f"{PROXY_PATH}?path={quote(encode_reference(reference))}"


def reference_from_proxy_url(url: str) -> Optional[str]:
    values = parse_qs(urlparse(url).query).get('path')
    if not values:
        return None
    return decode_reference(values[0])


class ImageRelay:
    """Pass-through fetcher that degrades to a transparent placeholder."""

    def __init__(self, client: Optional[PlexClient] = None):
        self.client = client or PlexClient()

    async def fetch(self, encoded: Optional[str]) -> RelayedImage:
        reference = decode_reference(encoded)
        if reference is None:
            if encoded:
                logger.warning('[Relay] Invalid image reference: %s', encoded)
            return placeholder_image()
        return await self.fetch_reference(reference)

    async def fetch_reference(self, reference: str) -> RelayedImage:
        try:
            url = self.client.absolute_url(reference)
            # Foreign hosts never receive the server token.
            with_token = self.client.is_server_url(url) and 'X-Plex-Token=' not in url
            response = await self.client.fetch(url, with_token=with_token)
        except PlexUnavailableError as exc:
            logger.warning('[Relay] Image unavailable: %s', exc)
            return placeholder_image()
        if not response.content:
            logger.warning('[Relay] Empty image body for %s', reference)
            return placeholder_image()
        content_type = response.headers.get('content-type') or 'application/octet-stream'
        return RelayedImage(content=response.content, content_type=content_type)


def relay_loader(relay: ImageRelay) -> ImageLoader:
    """Build an in-process image loader that resolves ``/proxy?path=...`` URLs."""

    async def _load(url: str) -> Optional[bytes]:
        reference = reference_from_proxy_url(url)
        if reference is None:
            return None
        image = await relay.fetch_reference(reference)
        return None if image.placeholder else image.content

    return _load


def poster_url(item: Item) -> str:
    return proxy_url(item.poster_ref)


def background_url(item: Item) -> str:
    return proxy_url(item.background_ref)


def remote_loader(
    base_url: str,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None
) -> ImageLoader:
    """Build a loader that reads ``/proxy?path=...`` URLs from another poster-wall server.

    The remote relay answers 200 with a ``no-cache`` placeholder when it has no
    image; that is reported as missing so the prefetcher retries later.
    """
    root = base_url.rstrip('/')
    request_timeout = timeout if timeout is not None else config.PLEX_REQUEST_TIMEOUT

    async def _get(client: httpx.AsyncClient, url: str) -> httpx.Response:
        response = await client.get(f'{root}{url}', timeout=request_timeout)
        response.raise_for_status()
        return response

    async def _load(url: str) -> Optional[bytes]:
        if not url.startswith(PROXY_PATH):
            return None
        try:
            if http_client is not None:
                response = await _get(http_client, url)
            else:
                async with httpx.AsyncClient() as client:
                    response = await _get(client, url)
        except httpx.HTTPError as exc:
            logger.warning('[Relay] Remote image %s unavailable: %s', url, exc)
            return None
        if response.headers.get('cache-control') == PLACEHOLDER_CACHE_CONTROL or not response.content:
            return None
        return response.content

    return _load
