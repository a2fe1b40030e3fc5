"""
Tests for Alert Rate Limiter

Tests fixed-window admission, per-source isolation, runtime configuration
and the stale-bucket sweeper.
"""

import threading

import pydantic
import pytest

from fleetwatch.alerting.rate_limiter import RateLimiter, rate_limit_key


def _admit(limiter, alert_type="device_offline", **source):
    return limiter.try_admit(alert_type, **source)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def test_key_prefers_most_specific_source():
    assert rate_limit_key("device_offline", "d1", "ds1", "t1") == "device_offline:d1"
    assert rate_limit_key("data_source_sync_failed", None, "ds1", "t1") == (
        "data_source_sync_failed:ds1"
    )
    assert rate_limit_key("social_feed_sync_failed", tenant_id="t1") == (
        "social_feed_sync_failed:t1"
    )
    assert rate_limit_key("api_rate_limit") == "api_rate_limit:global"


# ---------------------------------------------------------------------------
# Windowing
# ---------------------------------------------------------------------------


def test_allows_up_to_max_then_limits(rate_limiter):
    assert rate_limiter.check("device_offline", device_id="d1").remaining == 5

    admitted = [_admit(rate_limiter, device_id="d1") for _ in range(6)]

    assert admitted == [True] * 5 + [False]
    status = rate_limiter.check("device_offline", device_id="d1")
    assert status.limited
    assert status.remaining == 0


def test_remaining_counts_down(rate_limiter):
    for _ in range(4):
        _admit(rate_limiter, device_id="d1")

    status = rate_limiter.check("device_offline", device_id="d1")

    assert not status.limited
    assert status.remaining == 1


def test_check_alone_does_not_consume(rate_limiter):
    for _ in range(10):
        assert not rate_limiter.check("device_offline", device_id="d1").limited


def test_window_resets_after_elapsed(rate_limiter, monotonic):
    for _ in range(5):
        _admit(rate_limiter, device_id="d1")
    assert rate_limiter.check("device_offline", device_id="d1").limited

    monotonic.advance_ms(60_000)
    assert rate_limiter.check("device_offline", device_id="d1").limited

    monotonic.advance_ms(1)
    assert not rate_limiter.check("device_offline", device_id="d1").limited


def test_reset_in_ms_counts_down(rate_limiter, monotonic):
    for _ in range(5):
        _admit(rate_limiter, device_id="d1")
    monotonic.advance_ms(20_000)

    status = rate_limiter.check("device_offline", device_id="d1")

    assert status.limited
    assert status.reset_in_ms == 40_000


def test_sources_are_isolated(rate_limiter):
    for _ in range(5):
        _admit(rate_limiter, device_id="d1")

    assert rate_limiter.check("device_offline", device_id="d1").limited
    assert not rate_limiter.check("device_offline", device_id="d2").limited
    assert not rate_limiter.check("device_screenshot_failed", device_id="d1").limited


def test_disabled_never_limits(rate_limiter):
    rate_limiter.configure(enabled=False)

    for _ in range(20):
        assert _admit(rate_limiter, device_id="d1")
    assert rate_limiter.bucket_count() == 0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_configure_keeps_unspecified_values(rate_limiter):
    rate_limiter.configure(max_per_window=2)

    config = rate_limiter.get_config()
    assert config.max_per_window == 2
    assert config.window_ms == 60_000
    assert config.enabled is True


def test_configure_applies_new_limit(rate_limiter):
    rate_limiter.configure(max_per_window=1)

    assert _admit(rate_limiter, device_id="d1")
    assert not _admit(rate_limiter, device_id="d1")


def test_configure_rejects_invalid_values(rate_limiter):
    with pytest.raises(pydantic.ValidationError):
        rate_limiter.configure(window_ms=0)

    assert rate_limiter.get_config().window_ms == 60_000


def test_get_config_returns_a_copy(rate_limiter):
    rate_limiter.get_config().max_per_window = 100

    assert rate_limiter.get_config().max_per_window == 5


def test_reset_clears_buckets(rate_limiter):
    for _ in range(5):
        _admit(rate_limiter, device_id="d1")

    rate_limiter.reset()

    assert rate_limiter.bucket_count() == 0
    assert not rate_limiter.check("device_offline", device_id="d1").limited


# ---------------------------------------------------------------------------
# Sweeping
# ---------------------------------------------------------------------------


def test_sweep_removes_buckets_older_than_two_windows(rate_limiter, monotonic):
    _admit(rate_limiter, device_id="old")
    monotonic.advance_ms(90_000)
    _admit(rate_limiter, device_id="new")
    monotonic.advance_ms(40_000)

    assert rate_limiter.sweep() == 1
    assert rate_limiter.bucket_count() == 1


def test_sweeper_thread_stops_on_shutdown(test_config):
    limiter = RateLimiter(test_config)
    sweeper = limiter._sweeper

    assert sweeper is not None and sweeper.is_alive()
    limiter.shutdown()
    assert not sweeper.is_alive()


def test_context_manager_shuts_down(test_config):
    with RateLimiter(test_config) as limiter:
        sweeper = limiter._sweeper

    assert not sweeper.is_alive()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_admissions_never_exceed_limit(test_config):
    limiter = RateLimiter(test_config, start_sweeper=False)
    start = threading.Barrier(8)
    admitted = []

    def worker():
        start.wait()
        for _ in range(10):
            if limiter.try_admit("device_offline", device_id="d1"):
                admitted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 5


def test_concurrent_admissions_are_not_lost(test_config):
    limiter = RateLimiter(test_config, start_sweeper=False)
    limiter.configure(max_per_window=1000)

    def worker():
        for _ in range(50):
            limiter.try_admit("device_offline", device_id="d1")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert limiter.check("device_offline", device_id="d1").remaining == 1000 - 400
