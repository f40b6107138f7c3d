"""
Tests for the virtual and asyncio schedulers
"""

import asyncio

from screen_gaze.scheduling import AsyncioScheduler, VirtualScheduler


def test_virtual_timers_run_in_order():
    scheduler = VirtualScheduler()
    fired = []
    scheduler.call_later(2.0, lambda: fired.append("b"))
    scheduler.call_later(1.0, lambda: fired.append("a"))

    assert scheduler.advance(1.5) == 1
    assert fired == ["a"]
    assert scheduler.now() == 1.5

    scheduler.advance(1.0)
    assert fired == ["a", "b"]


def test_virtual_cancel():
    scheduler = VirtualScheduler()
    fired = []
    handle = scheduler.call_later(1.0, lambda: fired.append(1))
    handle.cancel()
    assert handle.cancelled()
    assert scheduler.pending == 0
    scheduler.advance(5.0)
    assert fired == []


def test_timers_scheduled_by_callbacks_run_within_advance():
    scheduler = VirtualScheduler()
    times = []

    def first():
        times.append(scheduler.now())
        scheduler.call_later(0.5, lambda: times.append(scheduler.now()))

    scheduler.call_later(1.0, first)
    scheduler.advance(2.0)
    assert times == [1.0, 1.5]
    assert scheduler.now() == 2.0


def test_run_until_idle():
    scheduler = VirtualScheduler(start_time=10.0)
    count = []

    def tick():
        count.append(1)
        if len(count) < 3:
            scheduler.call_later(1.0, tick)

    scheduler.call_later(1.0, tick)
    scheduler.run_until_idle()
    assert len(count) == 3
    assert scheduler.now() == 13.0


def test_asyncio_scheduler_fires_on_loop():
    async def scenario():
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()
        start = scheduler.now()
        scheduler.call_later(0.01, fired.set)
        await asyncio.wait_for(fired.wait(), timeout=1.0)
        return scheduler.now() - start

    assert asyncio.run(scenario()) >= 0.0
