import asyncio
import random

import pytest

from posterwall.engine.scheduler import ManualScheduler
from posterwall.engine.surface import build_tile_grid
from posterwall.engine.transitions import TransitionController
from posterwall.services.relay import background_url, poster_url
from tests.fakes import RecordingSurface, make_item


def _controller(surface: RecordingSurface, scheduler: ManualScheduler) -> TransitionController:
    return TransitionController(
        surface,
        scheduler,
        rows=12,
        cols=8,
        duration=2.5,
        settle=0.2,
        rng=random.Random(5)
    )


def test_tile_grid_covers_area_and_absorbs_remainder():
    tiles = build_tile_grid(203, 305, 12, 8)

    assert len(tiles) == 96
    assert sum((tile.right - tile.left) * (tile.bottom - tile.top) for tile in tiles) == 203 * 305
    last = tiles[-1]
    assert (last.right, last.bottom) == (203, 305)
    assert last.right - last.left == 203 - 7 * (203 // 8)


def test_flip_delays_spread_across_duration(surface, scheduler):
    delays = _controller(surface, scheduler).flip_delays(96)

    assert delays[0] == 0
    assert delays == sorted(delays)
    assert max(delays) < 2.5 * 0.8


@pytest.mark.asyncio
async def test_missing_to_poster_fails_without_touching_display(surface, scheduler):
    current = make_item(1)
    surface.show(current, poster_url(current), background_url(current), False)
    controller = _controller(surface, scheduler)

    result = await controller.run(current, make_item(2, thumb=False))

    assert result is False
    assert surface.current == current
    assert surface.tile_runs == []
    assert surface.overlays == []
    assert not controller.running
    assert scheduler.pending() == 0


@pytest.mark.asyncio
async def test_missing_from_poster_fails(surface, scheduler):
    result = await _controller(surface, scheduler).run(make_item(1, thumb=False), make_item(2))
    assert result is False


@pytest.mark.asyncio
async def test_full_transition_flips_every_tile_in_shuffled_order(surface, scheduler):
    controller = _controller(surface, scheduler)
    source, target = make_item(1), make_item(2)

    task = asyncio.create_task(controller.run(source, target))
    await scheduler.settle()
    assert controller.running
    assert surface.tile_runs == [(96, poster_url(source), poster_url(target))]

    await scheduler.advance(0.1)
    assert surface.overlays == [(background_url(target), 0.4)]

    await scheduler.advance(2.0)
    assert not task.done()
    await scheduler.advance(0.2)

    assert task.done() and task.result() is True
    assert sorted(surface.flipped) == list(range(96))
    assert surface.flipped != list(range(96))
    assert surface.backgrounds == [background_url(target)]
    assert surface.overlays[-1] == (None, 0.0)
    assert not controller.running


@pytest.mark.asyncio
async def test_second_run_while_busy_is_rejected(surface, scheduler):
    controller = _controller(surface, scheduler)
    first = asyncio.create_task(controller.run(make_item(1), make_item(2)))
    await scheduler.settle()

    assert await controller.run(make_item(2), make_item(3)) is False

    await scheduler.advance(3.0)
    assert first.result() is True
