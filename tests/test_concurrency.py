"""Concurrency tests for the keyed processor."""

from __future__ import annotations

import threading
import time

import pytest

from specsync.concurrency import (
    ConcurrencyConfig,
    ConcurrentProcessor,
    Deadline,
    KeyedLocks,
    get_optimal_worker_count,
)
from specsync.errors import TrackerPermissionError


def test_concurrency_config_defaults() -> None:
    config = ConcurrencyConfig()
    assert config.enabled is False
    assert config.max_workers == 4
    assert ConcurrencyConfig(max_workers=0).max_workers == 1


def test_deadline_with_fake_clock() -> None:
    now = [100.0]
    deadline = Deadline(5, clock=lambda: now[0])
    assert deadline.expired() is False
    assert deadline.remaining() == 5
    now[0] = 105.0
    assert deadline.expired() is True
    assert deadline.remaining() == 0
    assert Deadline(None).expired() is False
    assert Deadline(None).remaining() is None


def test_same_key_never_runs_concurrently() -> None:
    active: dict[str, int] = {}
    overlaps: list[str] = []
    guard = threading.Lock()

    def work(item: tuple[str, int]) -> int:
        key = item[0]
        with guard:
            active[key] = active.get(key, 0) + 1
            if active[key] > 1:
                overlaps.append(key)
        time.sleep(0.01)
        with guard:
            active[key] -= 1
        return item[1]

    items = [("a", 1), ("b", 2), ("a", 3), ("c", 4), ("a", 5), ("b", 6)]
    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=True, max_workers=4))
    outcomes = processor.process(items, key=lambda i: i[0], func=work)
    assert overlaps == []
    assert [o.result for o in outcomes] == [1, 2, 3, 4, 5, 6]


def test_expired_deadline_leaves_items_pending() -> None:
    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=True, max_workers=2))
    outcomes = processor.process(
        [1, 2, 3], key=lambda i: i, func=lambda i: i * 2, deadline=Deadline(0)
    )
    assert all(o.pending for o in outcomes)
    assert all(o.result is None for o in outcomes)


def test_sequential_path_honours_deadline() -> None:
    now = [0.0]
    deadline = Deadline(10, clock=lambda: now[0])

    def work(item: int) -> int:
        now[0] += 6
        return item

    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=False))
    outcomes = processor.process([1, 2, 3], key=lambda i: i, func=work, deadline=deadline)
    assert [o.pending for o in outcomes] == [False, False, True]


def test_errors_are_captured_per_item() -> None:
    def work(item: int) -> int:
        if item == 2:
            raise ValueError("bad item")
        return item

    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=True, max_workers=2))
    outcomes = processor.process([1, 2, 3], key=lambda i: i, func=work)
    assert [o.result for o in outcomes] == [1, None, 3]
    assert isinstance(outcomes[1].error, ValueError)


def test_stop_on_error_halts_new_work() -> None:
    def work(item: int) -> int:
        if item == 1:
            raise TrackerPermissionError("forbidden")
        return item

    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=False))
    outcomes = processor.process(
        [1, 2, 3], key=lambda i: i, func=work, stop_on=(TrackerPermissionError,)
    )
    assert isinstance(outcomes[0].error, TrackerPermissionError)
    assert [o.pending for o in outcomes[1:]] == [True, True]


@pytest.mark.asyncio
async def test_process_async_inside_running_loop() -> None:
    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=True, max_workers=3))
    outcomes = await processor.process_async(
        ["x", "y", "x"], key=lambda i: i, func=lambda i: i.upper()
    )
    assert [o.result for o in outcomes] == ["X", "Y", "X"]


@pytest.mark.asyncio
async def test_process_falls_back_to_sequential_inside_loop() -> None:
    processor = ConcurrentProcessor(ConcurrencyConfig(enabled=True, max_workers=3))
    outcomes = processor.process([1, 2], key=lambda i: i, func=lambda i: i + 1)
    assert [o.result for o in outcomes] == [2, 3]


@pytest.mark.asyncio
async def test_keyed_locks_are_shared_per_key() -> None:
    locks = KeyedLocks()
    assert locks.lock_for("a") is locks.lock_for("a")
    assert locks.lock_for("a") is not locks.lock_for("b")
    assert len(locks) == 2


def test_optimal_worker_count() -> None:
    assert get_optimal_worker_count(3, 8) == 1
    assert get_optimal_worker_count(10, 8) == 2
    assert get_optimal_worker_count(30, 8) == 3
    assert get_optimal_worker_count(100, 8) == 8
    assert get_optimal_worker_count(100, 2) == 2
