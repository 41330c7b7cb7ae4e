from typing import List, Optional, Tuple

from posterwall.engine.surface import Tile, WallSurface
from posterwall.items import Item
from posterwall.services.feed import FeedSnapshot, WallFeed


def make_item(number: int, *, thumb: bool = True, **extra) -> Item:
    values = {
        'title': f'Movie {number}',
        'type': 'movie',
        'year': str(1990 + number % 30),
        'rating_key': str(1000 + number),
        'thumb': f'/library/metadata/{1000 + number}/thumb' if thumb else '',
        'art': f'/library/metadata/{1000 + number}/art' if thumb else ''
    }
    values.update(extra)
    return Item(**values)


def make_stream(number: int, **extra) -> Item:
    values = {'user': 'alice', 'duration': 1000, 'view_offset': 250}
    values.update(extra)
    return make_item(500 + number, **values)


class RecordingSurface(WallSurface):
    """Surface that records every call instead of drawing."""

    def __init__(self):
        self.shown: List[Tuple[Item, str, str, bool]] = []
        self.info_updates: List[Item] = []
        self.tile_runs: List[Tuple[int, str, str]] = []
        self.flipped: List[int] = []
        self.overlays: List[Tuple[Optional[str], float]] = []
        self.backgrounds: List[str] = []

    @property
    def poster_size(self) -> Tuple[int, int]:
        return (200, 300)

    @property
    def current(self) -> Optional[Item]:
        return self.shown[-1][0] if self.shown else None

    def show(self, item, poster_url, background_url, streaming):
        self.shown.append((item, poster_url, background_url, streaming))

    def update_info(self, item):
        self.info_updates.append(item)

    def begin_tiles(self, tiles: List[Tile], from_url, to_url):
        self.tile_runs.append((len(tiles), from_url, to_url))

    def flip_tile(self, tile: Tile):
        self.flipped.append(tile.index)

    def set_overlay(self, url, opacity):
        self.overlays.append((url, opacity))

    def set_background(self, url):
        self.backgrounds.append(url)


class FakeFeed(WallFeed):
    """Feed serving scripted streams and freshly numbered idle batches."""

    def __init__(self, streams: Optional[List[Item]] = None, batch_size: int = 15, empty_batches: bool = False):
        self.streams: List[Item] = list(streams or [])
        self.batch_size = batch_size
        self.empty_batches = empty_batches
        self.calls: List[dict] = []
        self._next = 0

    def next_batch(self) -> List[Item]:
        if self.empty_batches:
            return []
        items = [make_item(self._next + offset) for offset in range(self.batch_size)]
        self._next += self.batch_size
        return items

    async def fetch(self, *, count=None, seed=None, batch=None, session=None, check=False) -> FeedSnapshot:
        self.calls.append({'count': count, 'seed': seed, 'batch': batch, 'session': session, 'check': check})
        random_items: List[Item] = []
        if not self.streams or check:
            random_items = self.next_batch()
        return FeedSnapshot(active_streams=list(self.streams), random_items=random_items, batch=batch, session=session)


