"""Centralized retry / backoff helpers.

``run_with_retries`` wraps a single tracker call:

* ``TransientNetworkError`` -> exponential backoff with jitter, bounded by
  ``RetryConfig.attempts``; the last error is re-raised.
* ``TrackerRateLimitError`` -> sleep until the tracker's reset signal
  (``retry_after`` seconds or ``reset_at``), capped by ``max_sleep``.
* anything else propagates on the first failure.

Non-idempotent calls (issue creation) pass ``retry_transient=False``: a
timeout or 5xx there may still have created the issue, so the error surfaces
and the caller decides. Rate-limit responses are always retried since the
tracker rejected the request outright.

Environment overrides:
  SPECSYNC_RETRY_ATTEMPTS (default 3)
  SPECSYNC_RETRY_BASE (seconds base, default 0.5)
  SPECSYNC_RETRY_MAX_SLEEP (seconds cap, default 60)
"""

from __future__ import annotations

import os
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TypeVar

from .errors import TrackerRateLimitError, TransientNetworkError
from .logging import get_logger

T = TypeVar("T")

_JITTER = random.SystemRandom()


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


@dataclass
class RetryConfig:
    attempts: int = field(default_factory=lambda: int(os.environ.get("SPECSYNC_RETRY_ATTEMPTS", "3")))
    base_sleep: float = field(default_factory=lambda: _env_float("SPECSYNC_RETRY_BASE", "0.5"))
    max_sleep: float = field(default_factory=lambda: _env_float("SPECSYNC_RETRY_MAX_SLEEP", "60"))


def rate_limit_sleep(exc: TrackerRateLimitError, cfg: RetryConfig, *, now: datetime | None = None) -> float:
    """Seconds to wait before retrying after a rate limit response."""
    if exc.retry_after is not None:
        wait = exc.retry_after
    elif exc.reset_at is not None:
        current = now or datetime.now(timezone.utc)
        wait = (exc.reset_at - current).total_seconds()
    else:
        wait = cfg.base_sleep
    return max(0.0, min(wait, cfg.max_sleep))


def backoff_sleep(attempt: int, cfg: RetryConfig) -> float:
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    return min(backoff, cfg.max_sleep)


def run_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
    retry_transient: bool = True,
) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    logger = get_logger()
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TrackerRateLimitError as exc:
            if attempt >= attempts:
                raise
            sleep_for = rate_limit_sleep(exc, cfg)
            logger.warning(
                "rate limited; waiting for reset",
                attempt=attempt,
                attempts=attempts,
                sleep_seconds=round(sleep_for, 2),
            )
            sleep(sleep_for)
        except TransientNetworkError as exc:
            if not retry_transient or attempt >= attempts:
                raise
            sleep_for = backoff_sleep(attempt, cfg)
            logger.warning(
                "transient tracker error; retrying",
                attempt=attempt,
                attempts=attempts,
                sleep_seconds=round(sleep_for, 2),
                error=str(exc),
            )
            sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "rate_limit_sleep", "backoff_sleep"]
