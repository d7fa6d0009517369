"""MinIntervalGate tests."""

from __future__ import annotations

import asyncio

import pytest

from engine.rate_gate import MinIntervalGate


def _fake_clock():
    state = {"now": 0.0, "sleeps": []}

    async def sleep(seconds):
        state["sleeps"].append(seconds)
        state["now"] += seconds

    return state, (lambda: state["now"]), sleep


@pytest.mark.asyncio
async def test_first_permit_is_immediate_then_spaced():
    state, clock, sleep = _fake_clock()
    gate = MinIntervalGate(15.0, clock=clock, sleep=sleep)

    for _ in range(3):
        async with gate:
            pass

    assert state["sleeps"] == [15.0, 15.0]


@pytest.mark.asyncio
async def test_elapsed_time_counts_toward_the_interval():
    state, clock, sleep = _fake_clock()
    gate = MinIntervalGate(15.0, clock=clock, sleep=sleep)

    async with gate:
        pass
    state["now"] += 10.0
    async with gate:
        pass

    assert state["sleeps"] == [pytest.approx(5.0)]


@pytest.mark.asyncio
async def test_concurrent_callers_are_serialized():
    state, clock, sleep = _fake_clock()
    gate = MinIntervalGate(15.0, clock=clock, sleep=sleep)
    order = []
    inside = 0
    max_inside = 0

    async def worker(i):
        nonlocal inside, max_inside
        async with gate:
            inside += 1
            max_inside = max(max_inside, inside)
            order.append(i)
            await asyncio.sleep(0)
            inside -= 1

    await asyncio.gather(*(worker(i) for i in range(4)))

    assert max_inside == 1
    assert sorted(order) == [0, 1, 2, 3]
    assert len(state["sleeps"]) == 3
    assert gate.pending == 0


@pytest.mark.asyncio
async def test_failure_inside_gate_releases_the_permit():
    state, clock, sleep = _fake_clock()
    gate = MinIntervalGate(1.0, clock=clock, sleep=sleep)

    with pytest.raises(RuntimeError):
        async with gate:
            raise RuntimeError("boom")

    async with gate:
        pass
    assert gate.pending == 0
