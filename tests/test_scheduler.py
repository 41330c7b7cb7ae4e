import asyncio
from typing import List

import pytest

from posterwall.engine.scheduler import AsyncioScheduler, ManualScheduler, TimerSet


@pytest.mark.asyncio
async def test_manual_scheduler_fires_timers_in_order(scheduler: ManualScheduler):
    fired: List[str] = []
    scheduler.call_later(2.0, lambda: fired.append('b'))
    scheduler.call_later(1.0, lambda: fired.append('a'))
    cancelled = scheduler.call_later(1.5, lambda: fired.append('never'))
    cancelled.cancel()

    await scheduler.advance(1.0)
    assert fired == ['a']
    await scheduler.advance(5.0)
    assert fired == ['a', 'b']
    assert scheduler.now() == 6.0


@pytest.mark.asyncio
async def test_manual_interval_respects_first_delay(scheduler: ManualScheduler):
    ticks: List[float] = []
    handle = scheduler.call_every(15.0, lambda: ticks.append(scheduler.now()), first_delay=5.0)

    await scheduler.advance(40.0)
    handle.cancel()
    await scheduler.advance(60.0)

    assert ticks == [5.0, 20.0, 35.0]


@pytest.mark.asyncio
async def test_timer_set_keeps_one_timer_per_name(scheduler: ManualScheduler):
    ticks: List[str] = []
    timers = TimerSet(scheduler)
    timers.start('rotation', 8.0, lambda: ticks.append('old'))
    timers.start('rotation', 8.0, lambda: ticks.append('new'))

    await scheduler.advance(16.0)

    assert ticks == ['new', 'new']
    assert scheduler.pending() == 1
    timers.stop('rotation')
    assert not timers.is_running('rotation')
    assert scheduler.pending() == 0


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_interval(scheduler: ManualScheduler):
    calls: List[int] = []

    def _tick():
        calls.append(1)
        raise RuntimeError('boom')

    scheduler.call_every(1.0, _tick)
    await scheduler.advance(3.0)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_spawned_task_failures_are_contained(scheduler: ManualScheduler):
    async def _explode():
        raise RuntimeError('boom')

    task = scheduler.spawn(_explode(), name='explode')
    await scheduler.settle()

    assert task.done()
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_asyncio_scheduler_runs_and_cancels_intervals():
    scheduler = AsyncioScheduler()
    ticks: List[int] = []
    handle = scheduler.call_every(0.01, lambda: ticks.append(1), first_delay=0)

    await asyncio.sleep(0.06)
    handle.cancel()
    count = len(ticks)
    await asyncio.sleep(0.03)

    assert count >= 2
    assert len(ticks) == count
