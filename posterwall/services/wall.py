"""Lifecycle of the single poster wall instance served by this process."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from .. import config, models
from ..engine.prefetch import ImagePrefetcher
from ..engine.rotation import Mode, RotationEngine
from ..engine.scheduler import AsyncioScheduler, Scheduler
from ..engine.surface import FrameSurface
from ..engine.transitions import TransitionController
from ..items import Item
from .feed import HttpWallFeed, LocalWallFeed, WallFeed
from .library import LibrarySampler
from .plex import PlexClient
from .relay import ImageRelay, relay_loader, remote_loader
from .streams import StreamProbe

logger = config.logger


@dataclass
class Wall:
    engine: RotationEngine
    surface: FrameSurface
    prefetcher: ImagePrefetcher
    scheduler: Scheduler


_wall: Optional[Wall] = None


def _record_display(item: Item, mode: Mode) -> None:
    try:
        models.record_display(item.key, item.title, item.type, mode.value)
    except Exception as exc:  # noqa: BLE001
        logger.warning('[Wall] Could not record display of %s: %s', item.title, exc)


def build_wall(
    feed: Optional[WallFeed] = None,
    relay: Optional[ImageRelay] = None,
    scheduler: Optional[Scheduler] = None,
    rng: Optional[random.Random] = None
) -> Wall:
    """Wire the engine to its feed, an image loader and a Pillow surface.

    Without an explicit feed, ``WALL_FEED_URL`` selects a remote poster-wall
    server for both the feed and the images; otherwise the in-process probe,
    sampler and relay are used.
    """
    client = PlexClient()
    if feed is None and config.WALL_FEED_URL:
        logger.info('[Wall] Reading the wall feed from %s', config.WALL_FEED_URL)
        feed = HttpWallFeed(config.WALL_FEED_URL)
        loader = remote_loader(config.WALL_FEED_URL)
    else:
        feed = feed or LocalWallFeed(StreamProbe(client), LibrarySampler(client))
        loader = relay_loader(relay or ImageRelay(client))
    scheduler = scheduler or AsyncioScheduler()
    prefetcher = ImagePrefetcher(loader, scheduler)
    surface = FrameSurface(prefetcher.get)
    transitions = TransitionController(surface, scheduler)
    engine = RotationEngine(
        feed,
        surface,
        scheduler,
        transitions,
        prefetcher,
        rng=rng,
        on_display=_record_display
    )
    return Wall(engine=engine, surface=surface, prefetcher=prefetcher, scheduler=scheduler)


async def start_wall() -> Optional[Wall]:
    """Create and start the wall unless it is disabled or already running."""
    global _wall
    if not config.WALL_ENABLED:
        logger.info('[Wall] Disabled by configuration')
        return None
    if _wall is not None:
        return _wall
    if not config.PLEX_SERVER_URL and not config.WALL_FEED_URL:
        logger.warning('[Wall] PLEX_SERVER_URL is not set; the wall will show the placeholder')
    wall = build_wall()
    _wall = wall
    # Startup must not wait on the media server.
    wall.scheduler.spawn(wall.engine.start(), name='wall start')
    return wall


async def stop_wall() -> None:
    global _wall
    wall = _wall
    if wall is None:
        return
    _wall = None
    wall.engine.stop()
    await wall.scheduler.shutdown()


def get_wall() -> Optional[Wall]:
    return _wall


def apply_settings() -> None:
    """Push updated configuration into the running engine."""
    if _wall is not None:
        _wall.engine.reload_settings()
