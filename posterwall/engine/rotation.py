"""The poster wall's rotation state machine.

One :class:`RotationEngine` owns every piece of mutable wall state: the mode,
the active collection and index, the recently-seen window and the three
timers (rotation, stream probe, batch refresh). Timer callbacks are
synchronous; feed requests and transitions run as background tasks whose
results are re-validated against the collection ``generation`` before they
are applied.
"""

from __future__ import annotations

import random
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from .. import config
from ..items import Item, find_index, placeholder_item
from ..services.feed import FeedSnapshot, WallFeed
from ..services.relay import background_url, poster_url
from .prefetch import ImagePrefetcher
from .scheduler import Scheduler, TimerSet
from .surface import WallSurface
from .transitions import TransitionController

logger = config.logger

ROTATION_TIMER = 'rotation'
PROBE_TIMER = 'probe'
REFRESH_TIMER = 'refresh'

SEQUENTIAL_LIMIT = 3
NEAR_END_MARGIN = 2
SEED_RANGE = 10000

DisplayCallback = Callable[[Item, 'Mode'], None]


class Mode(str, Enum):
    IDLE = 'idle'
    STREAMING = 'streaming'


class EngineState(str, Enum):
    IDLE_ROTATING = 'IdleRotating'
    STREAMING_SINGLE = 'StreamingSingle'
    STREAMING_MULTI = 'StreamingMulti'
    TRANSITIONING = 'Transitioning'


class RecentlySeen:
    """Insertion-ordered identifiers of recently committed displays, oldest evicted."""

    def __init__(self, limit: int):
        self.limit = max(1, limit)
        self._keys: List[str] = []

    def add(self, key: str) -> None:
        if key in self._keys:
            self._keys.remove(key)
        self._keys.append(key)
        if len(self._keys) > self.limit:
            del self._keys[:-self.limit]

    def recent(self, count: int) -> List[str]:
        if count <= 0:
            return []
        return self._keys[-count:]

    def clear(self) -> None:
        self._keys.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class RotationEngine:
    def __init__(
        self,
        feed: WallFeed,
        surface: WallSurface,
        scheduler: Scheduler,
        transitions: TransitionController,
        prefetcher: ImagePrefetcher,
        *,
        rng: Optional[random.Random] = None,
        on_display: Optional[DisplayCallback] = None
    ):
        self.feed = feed
        self.surface = surface
        self.scheduler = scheduler
        self.transitions = transitions
        self.prefetcher = prefetcher
        self.rng = rng or random.Random()
        self.on_display = on_display
        self.timers = TimerSet(scheduler)
        self.session = uuid4().hex[:12]

        self.mode = Mode.IDLE
        self.batch: List[Item] = []
        self.streams: List[Item] = []
        self.items: List[Item] = []
        self.current_index = 0
        self.current: Optional[Item] = None
        self.display_count = 0
        self.last_refresh = 0.0
        self.generation = 0

        self._started = False
        self._transitioning = False
        self._probing = False
        self._load_token = 0
        self._loading = False
        self._deferred: Dict[str, Callable[[], None]] = {}
        self.seen = RecentlySeen(config.RECENTLY_SEEN_WINDOW)

        self.reload_settings()

    def reload_settings(self) -> None:
        """Pick up the current wall configuration and reschedule running timers."""
        self.display_interval = config.DISPLAY_INTERVAL
        self.probe_interval = config.STREAM_CHECK_INTERVAL
        self.probe_delay = config.STREAM_CHECK_DELAY
        self.refresh_interval = config.REFRESH_INTERVAL
        self.refresh_threshold = config.REFRESH_THRESHOLD
        self.batch_size = config.BATCH_SIZE
        self.recently_seen_window = config.RECENTLY_SEEN_WINDOW
        self.preload_ahead = config.PRELOAD_AHEAD
        self.seen.limit = max(1, self.recently_seen_window)
        self.transitions.rows = config.TILE_ROWS
        self.transitions.cols = config.TILE_COLS
        self.transitions.duration = config.TRANSITION_DURATION
        if not self._started:
            return
        if self.timers.is_running(ROTATION_TIMER):
            self.timers.start(ROTATION_TIMER, self.display_interval, self.on_rotation_tick)
        self.timers.start(PROBE_TIMER, self.probe_interval, self.on_probe_tick)
        self.timers.start(REFRESH_TIMER, self.refresh_interval, self.on_refresh_tick)

    # ------------------------------------------------------------------ state

    @property
    def running(self) -> bool:
        return self._started

    @property
    def state(self) -> EngineState:
        if self._transitioning:
            return EngineState.TRANSITIONING
        if self.mode is Mode.IDLE:
            return EngineState.IDLE_ROTATING
        if len(self.streams) > 1:
            return EngineState.STREAMING_MULTI
        return EngineState.STREAMING_SINGLE

    def snapshot(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'mode': self.mode.value,
            'index': self.current_index,
            'total': len(self.items),
            'current': self.current.to_wire() if self.current else None,
            'display_count': self.display_count,
            'stream_count': len(self.streams),
            'seconds_since_refresh': round(self.scheduler.now() - self.last_refresh, 1),
            'rotating': self.timers.is_running(ROTATION_TIMER),
            'session': self.session
        }

    # -------------------------------------------------------------- lifecycle

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.last_refresh = self.scheduler.now()
        snapshot = await self.feed.fetch(
            count=self.batch_size,
            seed=self.rng.randrange(SEED_RANGE),
            session=self.session
        )
        if not self._started:
            return
        self._apply_initial(snapshot)
        self.timers.start(PROBE_TIMER, self.probe_interval, self.on_probe_tick, first_delay=self.probe_delay)
        self.timers.start(REFRESH_TIMER, self.refresh_interval, self.on_refresh_tick)
        logger.info('[Wall] Started in %s (%d items)', self.state.value, len(self.items))

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.timers.stop_all()
        self._deferred.clear()
        logger.info('[Wall] Stopped')

    def _apply_initial(self, snapshot: FeedSnapshot) -> None:
        if snapshot.active_streams:
            self.mode = Mode.STREAMING
            self.streams = list(snapshot.active_streams)
            self.items = self.streams
        else:
            self.mode = Mode.IDLE
            self.batch = list(snapshot.random_items)
            self.items = self.batch
        self.generation += 1
        if self.items:
            self._commit(self._entry_index(self.items))
        else:
            self._show_placeholder()
        self._sync_rotation_timer(restart=True)

    # ----------------------------------------------------------------- timers

    def _rotation_wanted(self) -> bool:
        return self.mode is Mode.IDLE or len(self.streams) > 1

    def _sync_rotation_timer(self, restart: bool = False) -> None:
        """Cancel or (re)schedule the rotation timer for the current mode."""
        if not self._rotation_wanted():
            self.timers.stop(ROTATION_TIMER)
            return
        if restart or not self.timers.is_running(ROTATION_TIMER):
            self.timers.start(ROTATION_TIMER, self.display_interval, self.on_rotation_tick)

    def on_rotation_tick(self) -> None:
        if not self._started:
            return
        if self._transitioning:
            logger.debug('[Wall] Rotation tick dropped during transition')
            return
        if self.mode is Mode.STREAMING and len(self.streams) < 2:
            return
        if self.mode is Mode.IDLE and (not self.items or self.should_load_fresh_batch()):
            self.load_fresh_batch()
            return
        if len(self.items) < 2:
            return
        index = self.select_next_index()
        target = self.items[index]
        self.prefetcher.warm(poster_url(target))
        generation = self.generation
        self._transition_to(target, lambda: self._commit_checked(generation, index, target))

    def on_probe_tick(self) -> None:
        if not self._started:
            return
        if self._transitioning:
            logger.debug('[Wall] Probe tick dropped during transition')
            return
        if self._probing:
            return
        self._probing = True
        self.scheduler.spawn(self._probe(), name='stream probe')

    def on_refresh_tick(self) -> None:
        if not self._started or self.mode is not Mode.IDLE:
            return
        logger.debug('[Wall] Periodic batch refresh')
        self.load_fresh_batch()

    # -------------------------------------------------------------- selection

    def select_next_index(self) -> int:
        """Pick the next index to display, avoiding the current and recently seen items.

        Collections of up to three items rotate in order. Larger ones choose
        uniformly among indices whose identifiers are outside the last
        ``min(total - 1, window) - 1`` committed displays; when that leaves no
        candidate the window is cleared and anything but the current index is
        allowed.
        """
        total = len(self.items)
        if total <= 1:
            return 0
        current = self.current_index if 0 <= self.current_index < total else -1
        if total <= SEQUENTIAL_LIMIT:
            return (current + 1) % total

        limit = min(total - 1, self.recently_seen_window)
        excluded = set(self.seen.recent(limit - 1))
        candidates = [
            index for index, item in enumerate(self.items)
            if index != current and item.key not in excluded
        ]
        if not candidates:
            self.seen.clear()
            candidates = [index for index in range(total) if index != current]
        return self.rng.choice(candidates)

    def should_load_fresh_batch(self) -> bool:
        return (
            self.display_count >= self.refresh_threshold
            or self.scheduler.now() - self.last_refresh > self.refresh_interval
            or self.current_index >= len(self.items) - NEAR_END_MARGIN
        )

    # ---------------------------------------------------------------- batches

    def load_fresh_batch(self, force: bool = False) -> bool:
        """Request a new idle batch; a forced load supersedes one already in flight."""
        if not self._started:
            return False
        if not force and (self._loading or self._transitioning):
            return False
        self._load_token += 1
        self._loading = True
        self.scheduler.spawn(self._load_batch(self._load_token), name='batch load')
        return True

    async def _load_batch(self, token: int) -> None:
        logger.debug('[Wall] Loading fresh batch')
        try:
            snapshot = await self.feed.fetch(
                count=self.batch_size,
                seed=self.rng.randrange(SEED_RANGE),
                batch=int(self.scheduler.now() * 1000),
                session=self.session
            )
        except Exception as exc:  # noqa: BLE001
            logger.error('[Wall] Batch load failed: %s', exc)
            snapshot = FeedSnapshot()
        if token != self._load_token or not self._started:
            logger.debug('[Wall] Superseded batch discarded')
            return
        self._loading = False
        self._run_or_defer('batch', lambda: self._apply_batch(snapshot))

    def _apply_batch(self, snapshot: FeedSnapshot) -> None:
        if snapshot.active_streams:
            self.reconcile(snapshot.active_streams)
            return
        if self.mode is not Mode.IDLE:
            return
        items = list(snapshot.random_items)
        if not items:
            logger.warning('[Wall] Fresh batch came back empty; keeping current display')
            if self.current is None:
                self._show_placeholder()
            return
        entry = self._entry_index(items)
        for item in items[:self.preload_ahead]:
            self.prefetcher.warm(poster_url(item))
        generation = self.generation
        self._transition_to(items[entry], lambda: self._commit_batch(generation, items, entry))

    def _commit_batch(self, generation: int, items: List[Item], entry: int) -> None:
        if generation != self.generation or self.mode is not Mode.IDLE:
            self._redisplay()
            return
        self.batch = items
        self.items = self.batch
        self.generation += 1
        self.seen.clear()
        self.display_count = 0
        self.last_refresh = self.scheduler.now()
        self._commit(entry)
        logger.info('[Wall] Loaded %d new items', len(items))

    # ---------------------------------------------------------------- streams

    async def _probe(self) -> None:
        try:
            snapshot = await self.feed.fetch(count=self.batch_size, session=self.session, check=True)
        finally:
            self._probing = False
        if not self._started:
            return
        self._run_or_defer('probe', lambda: self.reconcile(snapshot.active_streams))

    def reconcile(self, streams: List[Item]) -> None:
        """Apply one probe result to the mode, the collection and the rotation timer."""
        previous = self.streams
        self.streams = list(streams)

        if self.mode is Mode.IDLE:
            if not self.streams:
                return
            self.mode = Mode.STREAMING
            self._replace_items(self.streams)
            self.seen.clear()
            logger.info('[Wall] Switching to streaming mode (%d streams)', len(self.streams))
            self._sync_rotation_timer(restart=True)
            target = self.streams[0]
            generation = self.generation
            if self.current is not None and self.current.key == target.key:
                self._commit(0)
            else:
                self.prefetcher.warm(poster_url(target))
                self._transition_to(target, lambda: self._commit_checked(generation, 0, target), cut_on_failure=True)
            return

        if not self.streams:
            self.mode = Mode.IDLE
            self._replace_items(self.batch)
            logger.info('[Wall] Switching back to random posters')
            self._sync_rotation_timer(restart=True)
            self.load_fresh_batch(force=True)
            return

        was_multi = len(previous) > 1
        displayed = self.current.key if self.current is not None else None
        self._replace_items(self.streams)
        index = find_index(self.streams, displayed) if displayed is not None else None
        if index is not None:
            self.current_index = index
            self.current = self.streams[index]
            self.surface.update_info(self.current)
        else:
            self.current_index = 0
            target = self.streams[0]
            generation = self.generation
            self._transition_to(target, lambda: self._commit_checked(generation, 0, target), cut_on_failure=True)
        self._sync_rotation_timer(restart=not was_multi)

    # ---------------------------------------------------------------- display

    def _replace_items(self, items: List[Item]) -> None:
        self.items = items
        self.generation += 1
        if not 0 <= self.current_index < len(items):
            self.current_index = 0

    @staticmethod
    def _entry_index(items: List[Item]) -> int:
        for index, item in enumerate(items):
            if item.poster_ref:
                return index
        return 0

    def _run_or_defer(self, name: str, action: Callable[[], None]) -> None:
        if self._transitioning:
            self._deferred[name] = action
            return
        action()

    def _transition_to(self, target: Item, on_success: Callable[[], None], cut_on_failure: bool = False) -> None:
        """Animate to ``target`` and run ``on_success``; a poster-less current item is cut away from."""
        if self._transitioning:
            return
        current = self.current
        if current is None or not current.poster_ref or (cut_on_failure and not target.poster_ref):
            on_success()
            return
        self._transitioning = True
        self.scheduler.spawn(self._run_transition(current, target, on_success), name='transition')

    async def _run_transition(self, current: Item, target: Item, on_success: Callable[[], None]) -> None:
        try:
            succeeded = await self.transitions.run(current, target)
        finally:
            self._transitioning = False
        if not self._started:
            return
        if succeeded:
            on_success()
        else:
            logger.debug('[Wall] Transition to %s failed; will retry on next tick', target.title)
        deferred = list(self._deferred.items())
        self._deferred.clear()
        for name, action in deferred:
            self._run_or_defer(name, action)

    def _commit_checked(self, generation: int, index: int, target: Item) -> None:
        if generation == self.generation and index < len(self.items) and self.items[index].key == target.key:
            self._commit(index)
            return
        found = find_index(self.items, target.key)
        if found is None:
            logger.debug('[Wall] %s left the collection mid-transition', target.title)
            self._redisplay()
            return
        self._commit(found)

    def _commit(self, index: int) -> None:
        item = self.items[index]
        self.current_index = index
        self.current = item
        self.surface.show(item, poster_url(item), background_url(item), self.mode is Mode.STREAMING)
        self.display_count += 1
        self.seen.add(item.key)
        self.prefetcher.warm_ahead((poster_url(item), background_url(item)))
        self._warm_upcoming()
        logger.debug('[Wall] Displayed: %s (%d total)', item.title, self.display_count)
        if self.on_display is not None:
            try:
                self.on_display(item, self.mode)
            except Exception as exc:  # noqa: BLE001
                logger.error('[Wall] Display callback failed: %s', exc)

    def _redisplay(self) -> None:
        if self.current is None:
            self._show_placeholder()
            return
        self.surface.show(
            self.current,
            poster_url(self.current),
            background_url(self.current),
            self.mode is Mode.STREAMING
        )

    def _show_placeholder(self) -> None:
        logger.info('[Wall] Nothing to show; displaying placeholder')
        self.current = placeholder_item()
        self.current_index = 0
        self.surface.show(self.current, '', '', False)

    def _warm_upcoming(self) -> None:
        total = len(self.items)
        if not total:
            return
        ahead = min(self.preload_ahead, total - 1)
        for step in range(1, ahead + 1):
            upcoming = self.items[(self.current_index + step) % total]
            self.prefetcher.warm_ahead((poster_url(upcoming), background_url(upcoming)))
