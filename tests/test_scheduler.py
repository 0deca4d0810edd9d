"""Tests for the periodic tick scheduler."""

import asyncio

import pytest

from n2k_bridge.conversion import MessageKind, Scheduler


@pytest.mark.asyncio
async def test_schedule_runs_callback_repeatedly():
    scheduler = Scheduler()
    calls = []

    scheduler.schedule(("house", MessageKind.BATTERY_STATUS), 0.01, lambda: calls.append(1))
    await asyncio.sleep(0.055)
    await scheduler.stop()

    assert len(calls) >= 3


@pytest.mark.asyncio
async def test_stop_cancels_every_task():
    scheduler = Scheduler()
    calls = []

    scheduler.schedule(("a", MessageKind.BATTERY_STATUS), 0.01, lambda: calls.append("a"))
    scheduler.schedule(("b", MessageKind.TEMPERATURE), 0.01, lambda: calls.append("b"))
    assert len(scheduler) == 2

    await scheduler.stop()
    count = len(calls)
    await asyncio.sleep(0.03)

    assert len(scheduler) == 0
    assert len(calls) == count


@pytest.mark.asyncio
async def test_cancel_single_key():
    scheduler = Scheduler()
    key = ("port", MessageKind.ENGINE_RAPID)
    scheduler.schedule(key, 0.25, lambda: None)

    assert scheduler.cancel(key) is True
    assert scheduler.cancel(key) is False
    assert key not in scheduler

    await scheduler.stop()


@pytest.mark.asyncio
async def test_rescheduling_replaces_existing_task():
    scheduler = Scheduler()
    key = ("port", MessageKind.ENGINE_RAPID)
    first, second = [], []

    scheduler.schedule(key, 10.0, lambda: first.append(1), initial_delay_seconds=10.0)
    scheduler.schedule(key, 0.01, lambda: second.append(1))
    await asyncio.sleep(0.03)
    await scheduler.stop()

    assert scheduler.keys() == []
    assert first == []
    assert second


@pytest.mark.asyncio
async def test_failing_callback_keeps_schedule_alive():
    scheduler = Scheduler()
    calls = []

    def callback():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler.schedule(("x", MessageKind.TEMPERATURE), 0.01, callback)
    await asyncio.sleep(0.035)
    await scheduler.stop()

    assert len(calls) >= 2
