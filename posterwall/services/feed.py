"""Probe/sample feed shared by the HTTP endpoint and the rotation engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from time import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .. import config
from ..items import Item
from .library import LibrarySampler
from .streams import StreamProbe

logger = config.logger

STREAMS_PATH = '/api/streams'
CHECK_SAMPLE_LIMIT = 10


@dataclass(frozen=True)
class FeedSnapshot:
    active_streams: List[Item] = field(default_factory=list)
    random_items: List[Item] = field(default_factory=list)
    batch: Optional[int] = None
    timestamp: int = 0
    session: Optional[str] = None

    @property
    def has_streams(self) -> bool:
        return bool(self.active_streams)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'active_streams': [item.to_wire() for item in self.active_streams],
            'random_items': [item.to_wire() for item in self.random_items],
            'batch': self.batch,
            'timestamp': self.timestamp,
            'has_streams': self.has_streams,
            'random_count': len(self.random_items),
            'stream_count': len(self.active_streams),
            'session': self.session
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'FeedSnapshot':
        def _items(key: str) -> List[Item]:
            raw = payload.get(key) or []
            return [Item.from_wire(entry) for entry in raw if isinstance(entry, Mapping)]

        batch = payload.get('batch')
        return cls(
            active_streams=_items('active_streams'),
            random_items=_items('random_items'),
            batch=int(batch) if isinstance(batch, (int, float)) else None,
            timestamp=int(payload.get('timestamp') or 0),
            session=payload.get('session')
        )


def clamp_count(count: Optional[int]) -> int:
    if count is None:
        return config.BATCH_SIZE
    return max(1, min(int(count), config.MAX_BATCH_SIZE))


async def build_snapshot(
    probe: StreamProbe,
    sampler: LibrarySampler,
    *,
    count: Optional[int] = None,
    seed: Optional[int] = None,
    batch: Optional[int] = None,
    session: Optional[str] = None,
    check: bool = False
) -> FeedSnapshot:
    """Probe active streams and, when idle (or on an explicit check), sample the libraries."""
    target = clamp_count(count)
    active = await probe.active_streams()
    random_items: List[Item] = []
    if not active or check:
        sample_size = target if not active else min(target, CHECK_SAMPLE_LIMIT)
        random_items = await sampler.sample(sample_size, seed)
    return FeedSnapshot(
        active_streams=active,
        random_items=random_items,
        batch=batch if batch is not None else int(time()),
        timestamp=int(time()),
        session=session
    )


class WallFeed(ABC):
    """Source of stream and batch snapshots for the rotation engine."""

    @abstractmethod
    async def fetch(
        self,
        *,
        count: Optional[int] = None,
        seed: Optional[int] = None,
        batch: Optional[int] = None,
        session: Optional[str] = None,
        check: bool = False
    ) -> FeedSnapshot:
        """Return the current snapshot; implementations never raise."""
        raise NotImplementedError


class LocalWallFeed(WallFeed):
    """Feed served in-process by the probe and sampler services."""

    def __init__(self, probe: StreamProbe, sampler: LibrarySampler):
        self.probe = probe
        self.sampler = sampler

    async def fetch(self, **kwargs) -> FeedSnapshot:
        try:
            return await build_snapshot(self.probe, self.sampler, **kwargs)
        except Exception as exc:  # noqa: BLE001
            logger.error('[Feed] Snapshot failed: %s', exc)
            return FeedSnapshot(timestamp=int(time()))


class HttpWallFeed(WallFeed):
    """Feed read from a remote poster-wall server's ``/api/streams`` endpoint."""

    def __init__(self, base_url: str, *, http_client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout if timeout is not None else config.PLEX_REQUEST_TIMEOUT
        self._client = http_client

    def _params(
        self,
        count: Optional[int],
        seed: Optional[int],
        batch: Optional[int],
        session: Optional[str],
        check: bool
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if count is not None:
            params['count'] = count
        if seed is not None:
            params['seed'] = seed
        if batch is not None:
            params['batch'] = batch
        if session:
            params['session'] = session
        if check:
            params['check'] = int(time() * 1000)
        return params

    async def _get(self, client: httpx.AsyncClient, params: Dict[str, Any]) -> httpx.Response:
        response = await client.get(f'{self.base_url}{STREAMS_PATH}', params=params, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def fetch(
        self,
        *,
        count: Optional[int] = None,
        seed: Optional[int] = None,
        batch: Optional[int] = None,
        session: Optional[str] = None,
        check: bool = False
    ) -> FeedSnapshot:
        params = self._params(count, seed, batch, session, check)
        try:
            if self._client is not None:
                response = await self._get(self._client, params)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, params)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning('[Feed] %s unavailable: %s', self.base_url, exc)
            return FeedSnapshot(timestamp=int(time()))
        if not isinstance(payload, Mapping):
            logger.warning('[Feed] Unexpected payload from %s', self.base_url)
            return FeedSnapshot(timestamp=int(time()))
        return FeedSnapshot.from_payload(payload)
