"""Varied, reproducible sampling of library posters for idle rotation."""

from __future__ import annotations

import random
from asyncio import gather
from typing import List, Optional, Sequence, Tuple

from .. import config
from ..items import Item, item_from_metadata
from .plex import MalformedResponseError, PlexClient, PlexUnavailableError, is_live_entry

logger = config.logger

ELIGIBLE_SECTION_TYPES = {'movie', 'show'}
SKIPPED_ITEM_TYPES = {'track', 'artist'}
MAX_RANDOM_OFFSET = 500
MAX_SECTION_BATCH = 100
SHUFFLE_PASSES = 3


def section_batch_size(count: int) -> int:
    return max(1, min(count * 3, MAX_SECTION_BATCH))


def _has_artwork(entry) -> bool:
    return bool(entry.get('thumb') or entry.get('art'))


class LibrarySampler:
    """Draw a deduplicated batch of posters spread across movie and TV libraries.

    All randomness comes from a private :class:`random.Random`; with a seed
    and unchanged upstream data the output sequence is identical across calls.
    """

    def __init__(self, client: Optional[PlexClient] = None):
        self.client = client or PlexClient()

    async def eligible_sections(self) -> List[str]:
        try:
            container = await self.client.sections()
        except (PlexUnavailableError, MalformedResponseError) as exc:
            logger.warning('[Sampler] Library sections unavailable: %s', exc)
            return []
        keys: List[str] = []
        for directory in container.directories:
            if str(directory.get('type', '')) not in ELIGIBLE_SECTION_TYPES:
                continue
            key = str(directory.get('key', '')).strip()
            if key:
                keys.append(key)
        return keys

    async def _fetch_section(self, section_key: str, offset: int, size: int) -> List[Item]:
        container = await self.client.section_items(section_key, offset, size)
        items: List[Item] = []
        for entry in (*container.metadata, *container.directories):
            if str(entry.get('type', '')) in SKIPPED_ITEM_TYPES or is_live_entry(entry):
                continue
            if not _has_artwork(entry):
                continue
            items.append(item_from_metadata(entry))
        logger.debug('[Sampler] Library %s offset %d: %d items', section_key, offset, len(items))
        return items

    async def sample(self, count: int, seed: Optional[int] = None) -> List[Item]:
        if count <= 0:
            return []
        rng = random.Random(seed)

        sections = await self.eligible_sections()
        if not sections:
            logger.info('[Sampler] No eligible libraries')
            return []
        rng.shuffle(sections)

        size = section_batch_size(count)
        plan: List[Tuple[str, int]] = [(key, rng.randint(0, MAX_RANDOM_OFFSET)) for key in sections]
        results = await gather(
            *(self._fetch_section(key, offset, size) for key, offset in plan),
            return_exceptions=True
        )

        pool: List[Item] = []
        for (key, offset), result in zip(plan, results):
            if isinstance(result, Exception):
                logger.warning('[Sampler] Skipping library %s at offset %d: %s', key, offset, result)
                continue
            pool.extend(result)

        unique = dedupe_items(pool)
        for _ in range(SHUFFLE_PASSES):
            rng.shuffle(unique)
        selected = unique[:count]
        logger.info(
            '[Sampler] Sampled %d of %d unique items (seed=%s, requested=%d)',
            len(selected),
            len(unique),
            seed,
            count
        )
        return selected


def dedupe_items(items: Sequence[Item]) -> List[Item]:
    """Drop repeated identifiers, keeping the first occurrence."""
    seen = set()
    unique: List[Item] = []
    for item in items:
        if item.key in seen:
            continue
        seen.add(item.key)
        unique.append(item)
    return unique
