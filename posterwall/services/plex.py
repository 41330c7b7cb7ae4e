"""Async client and response decoding for the Plex media server."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse
from xml.etree import ElementTree as ET

import httpx

from .. import config

logger = config.logger

SESSIONS_PATH = '/status/sessions'
SECTIONS_PATH = '/library/sections'


class PlexUnavailableError(RuntimeError):
    """Raised when the media server cannot be reached or answers with an error."""
    pass


class MalformedResponseError(ValueError):
    """Raised when a response decodes as neither JSON nor XML."""
    pass


class WireFormat(str, Enum):
    JSON = 'json'
    XML = 'xml'


@dataclass(frozen=True)
class MediaContainer:
    """Decoded ``MediaContainer`` body, normalized to the JSON entry shape.

    ``metadata`` holds playable entries (``Metadata`` in JSON, ``<Video>`` in
    XML) and ``directories`` holds ``Directory`` entries (library sections,
    shows, collections). ``format`` records which decoder succeeded.
    """

    format: WireFormat
    metadata: List[Dict[str, Any]] = field(default_factory=list)
    directories: List[Dict[str, Any]] = field(default_factory=list)


def _decode_json(text: str) -> MediaContainer:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError('JSON body is not an object')
    container = data.get('MediaContainer') or {}
    if not isinstance(container, dict):
        raise ValueError('MediaContainer is not an object')
    metadata = [entry for entry in container.get('Metadata') or [] if isinstance(entry, dict)]
    directories = [entry for entry in container.get('Directory') or [] if isinstance(entry, dict)]
    return MediaContainer(WireFormat.JSON, metadata, directories)


def _xml_entry(element: ET.Element) -> Dict[str, Any]:
    entry: Dict[str, Any] = dict(element.attrib)
    user = element.find('User')
    if user is not None:
        entry['User'] = dict(user.attrib)
    return entry


def _decode_xml(text: str) -> MediaContainer:
    root = ET.fromstring(text)
    metadata = [_xml_entry(element) for element in root.findall('Video')]
    directories = [_xml_entry(element) for element in root.findall('Directory')]
    return MediaContainer(WireFormat.XML, metadata, directories)


def decode_container(text: str) -> MediaContainer:
    """Decode a media-server body, trying JSON first and XML only if that fails."""
    try:
        return _decode_json(text)
    except ValueError as json_exc:
        logger.debug('[Plex] JSON decode failed (%s); trying XML', json_exc)
    try:
        return _decode_xml(text)
    except ET.ParseError as xml_exc:
        raise MalformedResponseError(f'Response is neither JSON nor XML: {xml_exc}') from xml_exc


def is_live_entry(entry: Mapping[str, Any]) -> bool:
    return str(entry.get('live', '')).strip() in ('1', 'true', 'True')


class PlexClient:
    """Thin wrapper around the Plex HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url if base_url is not None else config.PLEX_SERVER_URL).rstrip('/')
        self.token = token if token is not None else config.PLEX_TOKEN
        self.timeout = timeout if timeout is not None else config.PLEX_REQUEST_TIMEOUT
        self._client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        return {'Accept': 'application/json'}

    def _params(self, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.token:
            params['X-Plex-Token'] = self.token
        if extra:
            params.update(extra)
        return params

    def is_server_url(self, url: str) -> bool:
        """True when ``url`` points at the configured media server."""
        server = urlparse(self.base_url)
        target = urlparse(url)
        return bool(server.netloc) and (server.scheme, server.netloc.lower()) == (target.scheme, target.netloc.lower())

    def absolute_url(self, reference: str) -> str:
        """Resolve a server-relative path (``/library/...``) against the base URL."""
        if reference.startswith('http://') or reference.startswith('https://'):
            return reference
        return f"{self.base_url}{reference}"

    async def _send(self, client: httpx.AsyncClient, url: str, params: Dict[str, Any]) -> httpx.Response:
        response = await client.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        return response

    async def fetch(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        with_token: bool = True
    ) -> httpx.Response:
        """GET ``url`` from the media server, raising :class:`PlexUnavailableError` on failure."""
        if not self.configured:
            raise PlexUnavailableError('PLEX_SERVER_URL is not configured')
        request_params = self._params(params) if with_token else dict(params or {})
        try:
            if self._client is not None:
                return await self._send(self._client, url, request_params)
            async with httpx.AsyncClient(follow_redirects=True, verify=False) as client:
                return await self._send(client, url, request_params)
        except httpx.HTTPStatusError as exc:
            raise PlexUnavailableError(f'{url} answered HTTP {exc.response.status_code}') from exc
        except httpx.HTTPError as exc:
            raise PlexUnavailableError(f'{url} unreachable: {exc}') from exc

    async def get_container(self, path: str, params: Optional[Mapping[str, Any]] = None) -> MediaContainer:
        response = await self.fetch(self.absolute_url(path), params)
        if not response.text:
            raise MalformedResponseError(f'Empty response from {path}')
        return decode_container(response.text)

    async def sessions(self) -> MediaContainer:
        return await self.get_container(SESSIONS_PATH)

    async def sections(self) -> MediaContainer:
        return await self.get_container(SECTIONS_PATH)

    async def section_items(self, section_key: str, start: int, size: int) -> MediaContainer:
        return await self.get_container(
            f'{SECTIONS_PATH}/{section_key}/all',
            {'X-Plex-Container-Start': start, 'X-Plex-Container-Size': size}
        )
