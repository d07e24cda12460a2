"""Tests for the single-flight event queue."""

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from tab_canopy.core.sync.event_queue import EventQueue


def _delayed(log: list[int], i: int, delay: float) -> Callable[[], Awaitable[None]]:
    async def work() -> None:
        await asyncio.sleep(delay)
        log.append(i)

    return work


def test_items_complete_in_enqueue_order() -> None:
    completed: list[int] = []

    async def scenario() -> list[bool]:
        queue = EventQueue()
        futures = [
            queue.enqueue(f"item-{i}", _delayed(completed, i, delay))
            for i, delay in enumerate([0.05, 0.01, 0.03])
        ]
        results = await asyncio.gather(*futures)
        await queue.close()
        return list(results)

    assert asyncio.run(scenario()) == [True, True, True]
    assert completed == [0, 1, 2]


def test_failing_item_does_not_stop_the_queue() -> None:
    completed: list[int] = []

    async def boom() -> None:
        msg = "handler failed"
        raise RuntimeError(msg)

    async def scenario() -> list[bool]:
        queue = EventQueue()
        first = queue.enqueue("boom", boom)
        second = queue.enqueue("after", _delayed(completed, 1, 0))
        results = [await first, await second]
        await queue.close()
        return results

    assert asyncio.run(scenario()) == [False, True]
    assert completed == [1]


def test_only_one_item_runs_at_a_time() -> None:
    running = 0
    peak = 0

    async def work() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.001)
        running -= 1

    async def scenario() -> None:
        queue = EventQueue()
        for i in range(5):
            queue.enqueue(f"item-{i}", work)
        await queue.join()
        await queue.close()

    asyncio.run(scenario())
    assert peak == 1


def test_size_counts_waiting_items() -> None:
    async def scenario() -> tuple[int, int]:
        queue = EventQueue()
        queue.enqueue("a", _delayed([], 0, 0))
        queue.enqueue("b", _delayed([], 1, 0))
        before = queue.size
        await queue.join()
        after = queue.size
        await queue.close()
        return before, after

    assert asyncio.run(scenario()) == (2, 0)


def test_enqueue_after_close_raises() -> None:
    async def scenario() -> None:
        queue = EventQueue()
        await queue.close()
        queue.enqueue("late", _delayed([], 0, 0))

    with pytest.raises(RuntimeError, match="queue is closed"):
        asyncio.run(scenario())


def test_queued_handler_captures_arguments() -> None:
    seen: list[tuple[int, str]] = []

    async def handler(tab_id: int, *, label: str) -> None:
        await asyncio.sleep(0)
        seen.append((tab_id, label))

    async def scenario() -> None:
        queue = EventQueue()
        callback = queue.queued_handler("tab-event", handler)
        callback(1, label="first")
        callback(2, label="second")
        await queue.join()
        await queue.close()

    asyncio.run(scenario())
    assert seen == [(1, "first"), (2, "second")]
