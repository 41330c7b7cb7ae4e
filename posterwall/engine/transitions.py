"""Tile-flip transition between two posters."""

from __future__ import annotations

import asyncio
import random
from asyncio import CancelledError
from functools import partial
from typing import List, Optional

from .. import config
from ..items import Item
from ..services.relay import background_url, poster_url
from .scheduler import Scheduler, TimerHandle
from .surface import WallSurface, build_tile_grid

logger = config.logger

FLIP_SPREAD = 0.8
OVERLAY_DELAY = 0.1
OVERLAY_OPACITY = 0.4
OVERLAY_HOLD = 1.5


class TransitionController:
    """Animate a rippling tile flip from one poster to the next.

    Only one transition runs at a time; :meth:`run` reports failure instead of
    queueing when called while busy, or when either poster is missing. In both
    cases nothing on the surface is touched.
    """

    def __init__(
        self,
        surface: WallSurface,
        scheduler: Scheduler,
        *,
        rows: Optional[int] = None,
        cols: Optional[int] = None,
        duration: Optional[float] = None,
        settle: Optional[float] = None,
        rng: Optional[random.Random] = None
    ):
        self.surface = surface
        self.scheduler = scheduler
        self.rows = rows or config.TILE_ROWS
        self.cols = cols or config.TILE_COLS
        self.duration = duration if duration is not None else config.TRANSITION_DURATION
        self.settle = settle if settle is not None else config.TRANSITION_SETTLE
        self.rng = rng or random.Random()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def flip_delays(self, count: int) -> List[float]:
        spread = self.duration * FLIP_SPREAD
        return [index / count * spread for index in range(count)]

    async def run(self, from_item: Optional[Item], to_item: Optional[Item]) -> bool:
        if self._running:
            logger.debug('[Transition] Already running; dropping request')
            return False
        if from_item is None or to_item is None or not from_item.poster_ref or not to_item.poster_ref:
            logger.warning(
                '[Transition] Missing poster (%s -> %s); keeping current display',
                from_item.title if from_item else None,
                to_item.title if to_item else None
            )
            return False

        self._running = True
        handles: List[TimerHandle] = []
        try:
            tiles = build_tile_grid(*self.surface.poster_size, self.rows, self.cols)
            order = list(tiles)
            self.rng.shuffle(order)
            delays = self.flip_delays(len(order))
            done = asyncio.get_running_loop().create_future()

            def _complete() -> None:
                if not done.done():
                    done.set_result(True)

            self.surface.begin_tiles(tiles, poster_url(from_item), poster_url(to_item))
            handles.extend(self._crossfade(background_url(to_item)))
            for tile, delay in zip(order, delays):
                handles.append(self.scheduler.call_later(delay, partial(self.surface.flip_tile, tile), name='tile flip'))
            handles.append(self.scheduler.call_later(max(delays) + self.settle, _complete, name='transition done'))
            logger.debug(
                '[Transition] %s -> %s (%d tiles, %.1fs)',
                from_item.title,
                to_item.title,
                len(order),
                self.duration
            )
            return await done
        except CancelledError:
            for handle in handles:
                handle.cancel()
            raise
        finally:
            self._running = False

    def _crossfade(self, url: str) -> List[TimerHandle]:
        """Fade the new backdrop in over the old one, swap the base, then fade the overlay out."""

        def _swap() -> None:
            self.surface.set_background(url)
            self.surface.set_overlay(None, 0.0)

        return [
            self.scheduler.call_later(
                OVERLAY_DELAY,
                partial(self.surface.set_overlay, url, OVERLAY_OPACITY),
                name='overlay in'
            ),
            self.scheduler.call_later(OVERLAY_DELAY + OVERLAY_HOLD, _swap, name='overlay out')
        ]
