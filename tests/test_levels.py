"""LevelSampler tests."""

import asyncio

import pytest

from voicetrip.core.levels import LevelSampler, baseline_frame


def _sampler_tasks():
    return [
        task for task in asyncio.all_tasks()
        if task.get_coro().__qualname__ == "LevelSampler._run" and not task.done()
    ]


def test_baseline_frame():
    assert baseline_frame() == (0.1,) * 20
    assert baseline_frame(4, 0.2) == (0.2, 0.2, 0.2, 0.2)


def test_invalid_settings():
    with pytest.raises(ValueError):
        LevelSampler(lambda: 0.0, lambda frame: None, count=0)
    with pytest.raises(ValueError):
        LevelSampler(lambda: 0.0, lambda frame: None, interval=0)


def test_tick_regenerates_whole_frame():
    frames = []
    sampler = LevelSampler(lambda: -30.0, frames.append, count=5)

    frame = sampler.tick()

    assert frame == (0.5,) * 5
    assert frames == [frame]
    assert sampler.frame == frame


def test_tick_treats_failed_reading_as_silence():
    def broken():
        raise OSError("stream closed")

    sampler = LevelSampler(broken, lambda frame: None, count=3)
    assert sampler.tick() == (0.1, 0.1, 0.1)


@pytest.mark.asyncio
async def test_sampler_publishes_while_running():
    frames = []
    sampler = LevelSampler(lambda: -12.0, frames.append, count=20, interval=0.01)

    sampler.start()
    await asyncio.sleep(0.08)
    sampler.stop()

    assert any(frame == (pytest.approx(0.8),) * 20 for frame in frames[:-1])
    assert frames[-1] == (0.1,) * 20
    assert not sampler.running


@pytest.mark.asyncio
async def test_stop_resets_to_baseline_and_publishes_nothing_after():
    frames = []
    sampler = LevelSampler(lambda: 0.0, frames.append, count=20, interval=0.01)

    sampler.start()
    await asyncio.sleep(0.05)
    sampler.stop()
    published = len(frames)
    await asyncio.sleep(0.05)

    assert sampler.frame == (0.1,) * 20
    assert frames[-1] == (0.1,) * 20
    assert len(frames) == published


@pytest.mark.asyncio
async def test_start_twice_keeps_a_single_ticker():
    sampler = LevelSampler(lambda: -30.0, lambda frame: None, interval=0.01)

    sampler.start()
    first = sampler._task
    sampler.start()
    await asyncio.sleep(0)

    assert first.cancelled()
    assert len(_sampler_tasks()) == 1
    sampler.stop()
    await asyncio.sleep(0)
    assert _sampler_tasks() == []


def test_stop_when_idle_publishes_baseline():
    frames = []
    sampler = LevelSampler(lambda: 0.0, frames.append, count=2)
    sampler.stop()
    assert frames == [(0.1, 0.1)]
