from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from specsync import retry
from specsync.errors import TrackerError, TrackerRateLimitError, TransientNetworkError

EXPECTED_RETRY_COUNT = 2  # transient once then success


def test_run_with_retries_transient_then_success() -> None:
    attempts: list[int] = []
    sleeps: list[float] = []

    def fn() -> str:
        attempts.append(1)
        if len(attempts) < EXPECTED_RETRY_COUNT:
            raise TransientNetworkError("connection reset")
        return "ok"

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.01, max_sleep=1)
    assert retry.run_with_retries(fn, cfg=cfg, sleep=sleeps.append) == "ok"
    assert len(attempts) == EXPECTED_RETRY_COUNT
    assert len(sleeps) == 1
    assert 0.01 <= sleeps[0] <= 1


def test_run_with_retries_gives_up_after_attempts() -> None:
    attempts: list[int] = []

    def fn() -> None:
        attempts.append(1)
        raise TransientNetworkError("502 bad gateway")

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.0, max_sleep=0.0)
    with pytest.raises(TransientNetworkError):
        retry.run_with_retries(fn, cfg=cfg, sleep=lambda _s: None)
    assert len(attempts) == 3


def test_run_with_retries_non_transient_propagates_immediately() -> None:
    attempts: list[int] = []

    def fn() -> None:
        attempts.append(1)
        raise TrackerError("validation failed", status=422)

    with pytest.raises(TrackerError):
        retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=5), sleep=lambda _s: None)
    assert len(attempts) == 1


def test_transient_errors_surface_at_once_for_non_idempotent_calls() -> None:
    attempts: list[int] = []

    def fn() -> None:
        attempts.append(1)
        raise TransientNetworkError("read timed out")

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.0, max_sleep=0.0)
    with pytest.raises(TransientNetworkError):
        retry.run_with_retries(fn, cfg=cfg, sleep=lambda _s: None, retry_transient=False)
    assert len(attempts) == 1


def test_rate_limit_waits_for_retry_after() -> None:
    sleeps: list[float] = []
    calls: list[int] = []

    def fn() -> str:
        calls.append(1)
        if len(calls) == 1:
            raise TrackerRateLimitError("rate limited", status=429, retry_after=7)
        return "done"

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.5, max_sleep=60)
    assert retry.run_with_retries(fn, cfg=cfg, sleep=sleeps.append) == "done"
    assert sleeps == [7]


def test_rate_limit_sleep_uses_reset_time_and_cap() -> None:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cfg = retry.RetryConfig(attempts=3, base_sleep=0.5, max_sleep=30)
    soon = TrackerRateLimitError("x", reset_at=now + timedelta(seconds=12))
    later = TrackerRateLimitError("x", reset_at=now + timedelta(hours=1))
    past = TrackerRateLimitError("x", reset_at=now - timedelta(seconds=5))
    assert retry.rate_limit_sleep(soon, cfg, now=now) == 12
    assert retry.rate_limit_sleep(later, cfg, now=now) == 30
    assert retry.rate_limit_sleep(past, cfg, now=now) == 0
    assert retry.rate_limit_sleep(TrackerRateLimitError("x"), cfg, now=now) == 0.5


def test_backoff_grows_and_is_capped() -> None:
    cfg = retry.RetryConfig(attempts=5, base_sleep=1.0, max_sleep=3.0)
    assert 1.0 <= retry.backoff_sleep(1, cfg) <= 1.25
    assert 2.0 <= retry.backoff_sleep(2, cfg) <= 2.25
    assert retry.backoff_sleep(4, cfg) == 3.0


def test_retry_config_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPECSYNC_RETRY_ATTEMPTS", "7")
    monkeypatch.setenv("SPECSYNC_RETRY_BASE", "0.1")
    monkeypatch.setenv("SPECSYNC_RETRY_MAX_SLEEP", "9")
    cfg = retry.RetryConfig()
    assert (cfg.attempts, cfg.base_sleep, cfg.max_sleep) == (7, 0.1, 9.0)
