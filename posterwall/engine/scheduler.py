"""Timer scheduling for the wall engine.

Everything runs on one event loop. Callbacks scheduled here are synchronous
turns; asynchronous work (network fetches, transitions) is launched with
:meth:`Scheduler.spawn` and never awaited by a timer callback.

Two implementations are provided: :class:`AsyncioScheduler` for the running
server and :class:`ManualScheduler`, a virtual clock advanced explicitly, used
to replay rotation deterministically in tests.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from asyncio import CancelledError, Task
from time import monotonic
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set, Tuple

from .. import config

logger = config.logger

Callback = Callable[[], None]


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, canceller: Callable[[], None]):
        self._canceller = canceller
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._canceller()


def _run_callback(name: str, callback: Callback) -> None:
    try:
        callback()
    except Exception as exc:  # noqa: BLE001
        logger.error('[Scheduler] %s callback failed: %s', name, exc)


class Scheduler(ABC):
    """Clock, timers and background tasks for one logical thread."""

    def __init__(self) -> None:
        self._tasks: Set[Task] = set()

    @abstractmethod
    def now(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def call_later(self, delay: float, callback: Callback, name: str = 'timer') -> TimerHandle:
        raise NotImplementedError

    @abstractmethod
    def call_every(
        self,
        interval: float,
        callback: Callback,
        *,
        first_delay: Optional[float] = None,
        name: str = 'interval'
    ) -> TimerHandle:
        raise NotImplementedError

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str = 'task') -> Task:
        """Run ``coro`` in the background, logging (not raising) its failure."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)

        def _done(finished: Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                logger.error('[Scheduler] Background %s failed: %s', name, exc)

        task.add_done_callback(_done)
        return task

    async def shutdown(self) -> None:
        """Cancel background tasks and wait for them to stop."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio loop."""

    def now(self) -> float:
        return monotonic()

    def call_later(self, delay: float, callback: Callback, name: str = 'timer') -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(0.0, delay), _run_callback, name, callback)
        return TimerHandle(handle.cancel)

    def call_every(
        self,
        interval: float,
        callback: Callback,
        *,
        first_delay: Optional[float] = None,
        name: str = 'interval'
    ) -> TimerHandle:
        async def _worker() -> None:
            delay = interval if first_delay is None else first_delay
            try:
                while True:
                    await asyncio.sleep(max(0.0, delay))
                    _run_callback(name, callback)
                    delay = interval
            except CancelledError:
                logger.debug('[Scheduler] %s worker cancelled', name)
                raise

        task = asyncio.get_running_loop().create_task(_worker())
        return TimerHandle(task.cancel)


class ManualScheduler(Scheduler):
    """Virtual clock; timers fire only while :meth:`advance` is running."""

    def __init__(self, start: float = 0.0, settle_rounds: int = 20):
        super().__init__()
        self._now = start
        self._queue: List[Tuple[float, int, Callback, str]] = []
        self._cancelled: Set[int] = set()
        self._sequence = itertools.count()
        self._settle_rounds = settle_rounds

    def now(self) -> float:
        return self._now

    def _push(self, when: float, callback: Callback, name: str) -> int:
        token = next(self._sequence)
        heapq.heappush(self._queue, (when, token, callback, name))
        return token

    def call_later(self, delay: float, callback: Callback, name: str = 'timer') -> TimerHandle:
        token = self._push(self._now + max(0.0, delay), callback, name)
        return TimerHandle(lambda: self._cancelled.add(token))

    def call_every(
        self,
        interval: float,
        callback: Callback,
        *,
        first_delay: Optional[float] = None,
        name: str = 'interval'
    ) -> TimerHandle:
        state: Dict[str, Any] = {'token': None, 'active': True}

        def _fire() -> None:
            if not state['active']:
                return
            state['token'] = self._push(self._now + interval, _fire, name)
            callback()

        first = interval if first_delay is None else first_delay
        state['token'] = self._push(self._now + max(0.0, first), _fire, name)

        def _cancel() -> None:
            state['active'] = False
            if state['token'] is not None:
                self._cancelled.add(state['token'])

        return TimerHandle(_cancel)

    async def settle(self) -> None:
        """Let spawned tasks run until they block on the virtual clock."""
        for _ in range(self._settle_rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self._now + seconds
        await self.settle()
        while self._queue and self._queue[0][0] <= target:
            when, token, callback, name = heapq.heappop(self._queue)
            if token in self._cancelled:
                self._cancelled.discard(token)
                continue
            self._now = max(self._now, when)
            _run_callback(name, callback)
            await self.settle()
        self._now = target

    def pending(self) -> int:
        return sum(1 for entry in self._queue if entry[1] not in self._cancelled)


class TimerSet:
    """Named repeating timers with at most one live timer per name.

    :meth:`start` always cancels the existing timer of that name before
    scheduling the new one.
    """

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler
        self._handles: Dict[str, TimerHandle] = {}

    def start(self, name: str, interval: float, callback: Callback, *, first_delay: Optional[float] = None) -> None:
        self.stop(name)
        self._handles[name] = self.scheduler.call_every(interval, callback, first_delay=first_delay, name=name)
        logger.debug('[Wall] %s timer started (%.1fs)', name, interval)

    def stop(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.cancel()
            logger.debug('[Wall] %s timer stopped', name)

    def is_running(self, name: str) -> bool:
        return name in self._handles

    def stop_all(self) -> None:
        for name in list(self._handles):
            self.stop(name)
