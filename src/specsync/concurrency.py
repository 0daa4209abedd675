"""Concurrency support for specsync.

Tasks with different sync keys are processed by a bounded worker pool; tasks
sharing a key are serialized behind a per-key lock, because the tracker has
no atomic "create if no issue carries these labels" operation. The pool size
is a rate-limit budget, not a CPU count.

The tracker calls inside a work item are blocking, so each item runs on a
thread while an asyncio loop coordinates admission, per-key locking and the
run deadline.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Hashable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .logging import get_logger

T = TypeVar('T')
R = TypeVar('R')


class ConcurrencyConfig:
    """Configuration for concurrency settings."""

    def __init__(self, enabled: bool = False, max_workers: int = 4):
        self.enabled = enabled
        self.max_workers = max(1, max_workers)


class Deadline:
    """Single deadline shared by a whole run; ``None`` means no limit."""

    def __init__(self, seconds: float | None, *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


@dataclass
class WorkOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None
    pending: bool = False


class KeyedLocks:
    """Lazily created asyncio locks, one per key."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class ConcurrentProcessor:
    """Runs ``func`` over items with per-key single-flight and a deadline.

    Items not started before the deadline (or after a ``stop_on`` error) come
    back with ``pending=True``; items already running are always awaited.
    """

    def __init__(self, config: ConcurrencyConfig):
        self.config = config
        self.logger = get_logger()

    def process(
        self,
        items: Sequence[T],
        *,
        key: Callable[[T], Hashable],
        func: Callable[[T], R],
        deadline: Deadline | None = None,
        stop_on: tuple[type[BaseException], ...] = (),
    ) -> list[WorkOutcome[T, R]]:
        if not self.config.enabled or len(items) <= 1:
            return self._process_sequential(items, func, deadline, stop_on)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(
                self.process_async(items, key=key, func=func, deadline=deadline, stop_on=stop_on)
            )
        # Already inside an event loop (e.g. an async caller); avoid nesting loops.
        return self._process_sequential(items, func, deadline, stop_on)

    def _process_sequential(
        self,
        items: Sequence[T],
        func: Callable[[T], R],
        deadline: Deadline | None,
        stop_on: tuple[type[BaseException], ...],
    ) -> list[WorkOutcome[T, R]]:
        outcomes: list[WorkOutcome[T, R]] = []
        stopped = False
        for item in items:
            if stopped or (deadline is not None and deadline.expired()):
                outcomes.append(WorkOutcome(item, pending=True))
                continue
            try:
                outcomes.append(WorkOutcome(item, result=func(item)))
            except Exception as exc:
                outcomes.append(WorkOutcome(item, error=exc))
                stopped = isinstance(exc, stop_on)
        return outcomes

    async def process_async(
        self,
        items: Sequence[T],
        *,
        key: Callable[[T], Hashable],
        func: Callable[[T], R],
        deadline: Deadline | None = None,
        stop_on: tuple[type[BaseException], ...] = (),
    ) -> list[WorkOutcome[T, R]]:
        """Process items concurrently; results keep the input order."""
        semaphore = asyncio.Semaphore(self.config.max_workers)
        locks = KeyedLocks()
        loop = asyncio.get_running_loop()
        state: dict[str, Any] = {"stopped": False}

        self.logger.log_operation(
            "concurrent_processing_start",
            item_count=len(items),
            max_workers=self.config.max_workers,
        )
        start_time = time.perf_counter()

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:

            async def run_one(item: T) -> WorkOutcome[T, R]:
                async with semaphore, locks.lock_for(key(item)):
                    if state["stopped"] or (deadline is not None and deadline.expired()):
                        return WorkOutcome(item, pending=True)
                    try:
                        result = await loop.run_in_executor(executor, func, item)
                    except Exception as exc:
                        if isinstance(exc, stop_on):
                            state["stopped"] = True
                        return WorkOutcome(item, error=exc)
                    return WorkOutcome(item, result=result)

            outcomes = await asyncio.gather(*(run_one(item) for item in items))

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.log_performance(
            "concurrent_processing", duration_ms, item_count=len(items), keys=len(locks)
        )
        return list(outcomes)


def get_optimal_worker_count(item_count: int, max_workers: int = 4) -> int:
    """Scale workers with the number of tasks, never above ``max_workers``."""
    small_threshold = 5
    medium_threshold = 20
    large_threshold = 50
    if item_count <= small_threshold:
        return 1
    elif item_count <= medium_threshold:
        return min(2, max_workers)
    elif item_count <= large_threshold:
        return min(3, max_workers)
    else:
        return max_workers


__all__ = [
    'ConcurrencyConfig',
    'ConcurrentProcessor',
    'Deadline',
    'KeyedLocks',
    'WorkOutcome',
    'get_optimal_worker_count',
]
