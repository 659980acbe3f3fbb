"""Tests for the fixed-delay request pacer."""

import asyncio

import pytest

from mapwatch.core.pacer import RequestPacer


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_calls_are_spaced_by_interval():
    clock = FakeClock()
    pacer = RequestPacer(4.0, clock=clock, sleep=clock.sleep)

    async def run():
        for _ in range(3):
            await pacer.wait()

    asyncio.run(run())
    assert clock.sleeps == [pytest.approx(0.25), pytest.approx(0.25)]


def test_no_wait_after_idle_period():
    clock = FakeClock()
    pacer = RequestPacer(2.0, clock=clock, sleep=clock.sleep)

    async def run():
        await pacer.wait()
        clock.now += 10
        await pacer.wait()

    asyncio.run(run())
    assert clock.sleeps == []


def test_set_rate_changes_interval():
    pacer = RequestPacer(7.0)
    pacer.set_rate(10.0)
    assert pacer.interval == pytest.approx(0.1)


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        RequestPacer(0)
