import asyncio

import pytest

from barcode_recorder.scheduler import AsyncTickScheduler


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AsyncTickScheduler(lambda: asyncio.sleep(0), 0)


def test_ticks_never_overlap() -> None:
    async def runner() -> None:
        active = 0
        peak = 0
        count = 0

        async def tick() -> None:
            nonlocal active, peak, count
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.05)
            active -= 1
            count += 1

        scheduler = AsyncTickScheduler(tick, 0.01)
        await scheduler.start()
        await asyncio.sleep(0.4)
        await scheduler.stop()

        assert peak == 1
        assert count >= 2
        assert scheduler.running is False

    asyncio.run(runner())


def test_failing_tick_keeps_loop_alive() -> None:
    async def runner() -> None:
        calls = 0

        async def tick() -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        scheduler = AsyncTickScheduler(tick, 0.02)
        await scheduler.start()
        await asyncio.sleep(0.2)
        assert scheduler.running is True
        await scheduler.stop()
        assert calls >= 2

    asyncio.run(runner())


def test_pause_and_resume() -> None:
    async def runner() -> None:
        calls = 0

        async def tick() -> None:
            nonlocal calls
            calls += 1

        scheduler = AsyncTickScheduler(tick, 0.02)
        await scheduler.start()
        await asyncio.sleep(0.05)
        scheduler.pause()
        assert scheduler.paused is True
        await asyncio.sleep(0.05)
        frozen = calls
        await asyncio.sleep(0.1)
        assert calls == frozen

        scheduler.resume()
        await asyncio.sleep(0.1)
        assert calls > frozen
        await scheduler.stop()

    asyncio.run(runner())


def test_restart_replaces_previous_task() -> None:
    async def runner() -> None:
        scheduler = AsyncTickScheduler(lambda: asyncio.sleep(0), 0.02)
        await scheduler.start()
        scheduler.pause()
        await scheduler.start()
        assert scheduler.paused is False
        assert scheduler.running is True
        await scheduler.stop()
        await scheduler.stop()
        assert scheduler.running is False

    asyncio.run(runner())


def test_set_interval_validates() -> None:
    scheduler = AsyncTickScheduler(lambda: asyncio.sleep(0), 0.5)
    scheduler.set_interval(0.2)
    assert scheduler.interval == 0.2
    with pytest.raises(ValueError):
        scheduler.set_interval(0)
