from __future__ import annotations

from typing import Dict, Iterable, Optional, Set

from .. import config
from ..services.relay import ImageLoader
from .scheduler import Scheduler

logger = config.logger


class ImagePrefetcher:
    """Warm poster images ahead of display.

    A URL is requested at most once while a request is in flight or its bytes
    are cached; ``warm`` is then a no-op. A failed or empty load forgets the
    URL so the next ``warm`` tries again. Fetched bytes are kept in memory for
    the surface to render from.
    """

    def __init__(self, loader: ImageLoader, scheduler: Scheduler, max_entries: int = 64):
        self.loader = loader
        self.scheduler = scheduler
        self.max_entries = max_entries
        self._requested: Set[str] = set()
        self._cache: Dict[str, bytes] = {}

    def warm(self, url: Optional[str]) -> bool:
        """Start fetching ``url`` in the background; returns False when already requested."""
        if not url or url in self._requested:
            return False
        self._requested.add(url)
        self.scheduler.spawn(self._load(url), name=f'prefetch {url}')
        return True

    def warm_ahead(self, urls: Iterable[Optional[str]]) -> int:
        return sum(1 for url in urls if self.warm(url))

    async def _load(self, url: str) -> None:
        try:
            content = await self.loader(url)
        except Exception as exc:  # noqa: BLE001
            logger.warning('[Prefetch] Failed to load %s: %s', url, exc)
            self._requested.discard(url)
            return
        if not content:
            logger.debug('[Prefetch] No image for %s', url)
            self._requested.discard(url)
            return
        self._store(url, content)

    def _store(self, url: str, content: bytes) -> None:
        self._cache[url] = content
        while len(self._cache) > self.max_entries:
            oldest = next(iter(self._cache))
            # Evicted entries may be warmed again.
            del self._cache[oldest]
            self._requested.discard(oldest)

    def get(self, url: Optional[str]) -> Optional[bytes]:
        if not url:
            return None
        return self._cache.get(url)

    def was_requested(self, url: str) -> bool:
        return url in self._requested

    def clear(self) -> None:
        self._requested.clear()
        self._cache.clear()
