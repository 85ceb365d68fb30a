from __future__ import annotations

import asyncio

import pytest

from policy_scraper.scheduler import map_with_concurrency, run_all


@pytest.mark.asyncio
async def test_map_with_concurrency_keeps_input_order() -> None:
    async def worker(item: int, index: int) -> int:
        # Later items finish first
        await asyncio.sleep(0.001 * (5 - item))
        return item * 10

    assert await map_with_concurrency([1, 2, 3, 4, 5], 3, worker) == [10, 20, 30, 40, 50]


@pytest.mark.asyncio
async def test_map_with_concurrency_respects_limit() -> None:
    in_flight = 0
    peak = 0

    async def worker(item: int, index: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return item

    await map_with_concurrency(list(range(20)), 4, worker)

    assert peak == 4


@pytest.mark.asyncio
async def test_map_with_concurrency_clamps_limit() -> None:
    async def worker(item: str, index: int) -> str:
        return f"{index}:{item}"

    assert await map_with_concurrency(["a", "b"], 0, worker) == ["0:a", "1:b"]
    assert await map_with_concurrency(["a"], 50, worker) == ["0:a"]
    assert await map_with_concurrency([], 3, worker) == []


@pytest.mark.asyncio
async def test_run_all_isolates_one_failing_item() -> None:
    async def worker(item: int) -> int:
        await asyncio.sleep(0)
        if item == 7:
            raise ValueError("broken policy")
        return item

    outcome = await run_all(list(range(10)), 3, worker, describe=lambda item: f"item-{item}")

    assert sorted(outcome.results) == [0, 1, 2, 3, 4, 5, 6, 8, 9]
    assert len(outcome.failures) == 1
    assert outcome.failures[0].reference == "item-7"
    assert outcome.failures[0].reason == "broken policy"


@pytest.mark.asyncio
async def test_run_all_does_not_raise_when_everything_fails() -> None:
    async def worker(item: int) -> int:
        raise RuntimeError()

    outcome = await run_all([1, 2], 2, worker)

    assert outcome.results == []
    assert [failure.reason for failure in outcome.failures] == ["RuntimeError", "RuntimeError"]
