"""
FleetWatch - Alert Rate Limiter

Fixed-window admission control for *new* alert creation, one bucket per
``(type, source)``. The source is the most specific identifier available:
device, then data source, then tenant, then ``"global"``.

``check`` only reports the bucket state. ``try_admit`` evaluates and
consumes budget under one lock, so concurrent callers never admit more than
``max_per_window`` per window. The engine calls it right before inserting a
new alert row, so coalescing into an existing alert never consumes budget.

Usage:
    limiter = RateLimiter(config)

    if limiter.try_admit("device_offline", device_id="d1", tenant_id="t1"):
        ...  # insert the new alert

    limiter.shutdown()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fleetwatch.shared.config import RateLimitConfig, Settings, get_config

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStatus:
    limited: bool
    remaining: int
    reset_in_ms: int


@dataclass
class RateLimitBucket:
    count: int
    window_start: float  # clock seconds


def rate_limit_key(
    alert_type: str,
    device_id: str | None = None,
    data_source_id: str | None = None,
    tenant_id: str | None = None,
) -> str:
    """Bucket key for an alert, preferring the most specific source."""
    source_id = device_id or data_source_id or tenant_id or "global"
    return f"{alert_type}:{source_id}"


class RateLimiter:
    """
    Thread-safe fixed-window rate limiter with a background sweeper.

    The sweeper drops buckets older than twice the window. It runs on a
    daemon thread started at construction (unless ``start_sweeper=False``)
    and is stopped by ``shutdown()``.
    """

    def __init__(
        self,
        config: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        start_sweeper: bool = True,
    ):
        """
        Initialize rate limiter.

        Args:
            config: Configuration object (uses default if not provided)
            clock: Monotonic clock in seconds, injectable for tests
            start_sweeper: Start the stale-bucket sweeper thread
        """
        self.config = config or get_config()
        self._settings = self.config.alerting.rate_limit.model_copy()
        self._clock = clock

        self._lock = threading.Lock()
        self._buckets: dict[str, RateLimitBucket] = {}

        self._shutdown_flag = threading.Event()
        self._sweeper: threading.Thread | None = None
        if start_sweeper:
            self._sweeper = threading.Thread(
                target=self._periodic_sweep,
                daemon=True,
                name="AlertRateLimiterSweeper",
            )
            self._sweeper.start()

    def __enter__(self) -> RateLimiter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.shutdown()
        return False

    # =========================================================================
    # Admission
    # =========================================================================

    def check(
        self,
        alert_type: str,
        device_id: str | None = None,
        data_source_id: str | None = None,
        tenant_id: str | None = None,
    ) -> RateLimitStatus:
        """
        Evaluate admission for a new alert without consuming budget.

        Resets the bucket first if it is missing or its window has elapsed.
        """
        with self._lock:
            settings = self._settings
            if not settings.enabled:
                return RateLimitStatus(
                    limited=False, remaining=settings.max_per_window, reset_in_ms=0
                )

            now = self._clock()
            bucket = self._current_bucket(
                rate_limit_key(alert_type, device_id, data_source_id, tenant_id), now
            )
            reset_in_ms = max(0, int(settings.window_ms - (now - bucket.window_start) * 1000))

            if bucket.count >= settings.max_per_window:
                return RateLimitStatus(limited=True, remaining=0, reset_in_ms=reset_in_ms)

            return RateLimitStatus(
                limited=False,
                remaining=settings.max_per_window - bucket.count,
                reset_in_ms=reset_in_ms,
            )

    def try_admit(
        self,
        alert_type: str,
        device_id: str | None = None,
        data_source_id: str | None = None,
        tenant_id: str | None = None,
    ) -> bool:
        """
        Count one new alert against its bucket if the window has room.

        Returns:
            True if admitted, False if the bucket is full
        """
        with self._lock:
            if not self._settings.enabled:
                return True
            key = rate_limit_key(alert_type, device_id, data_source_id, tenant_id)
            bucket = self._current_bucket(key, self._clock())
            if bucket.count >= self._settings.max_per_window:
                return False
            bucket.count += 1
            return True

    def _current_bucket(self, key: str, now: float) -> RateLimitBucket:
        # Caller holds the lock.
        bucket = self._buckets.get(key)
        if bucket is None or (now - bucket.window_start) * 1000 > self._settings.window_ms:
            bucket = RateLimitBucket(count=0, window_start=now)
            self._buckets[key] = bucket
        return bucket

    # =========================================================================
    # Runtime configuration
    # =========================================================================

    def configure(
        self,
        max_per_window: int | None = None,
        window_ms: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Adjust limits at runtime. Unspecified values are kept."""
        updates = {
            key: value
            for key, value in (
                ("max_per_window", max_per_window),
                ("window_ms", window_ms),
                ("enabled", enabled),
            )
            if value is not None
        }
        with self._lock:
            self._settings = RateLimitConfig.model_validate(
                {**self._settings.model_dump(), **updates}
            )
        logger.info("Rate limit configuration updated", extra=updates)

    def get_config(self) -> RateLimitConfig:
        """Snapshot of the current limits."""
        with self._lock:
            return self._settings.model_copy()

    def reset(self) -> None:
        """Drop all buckets."""
        with self._lock:
            self._buckets.clear()

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    # =========================================================================
    # Sweeping
    # =========================================================================

    def sweep(self) -> int:
        """
        Remove buckets whose window started more than two windows ago.

        Returns:
            Number of buckets removed
        """
        with self._lock:
            now = self._clock()
            max_age_ms = self._settings.window_ms * 2
            stale = [
                key
                for key, bucket in self._buckets.items()
                if (now - bucket.window_start) * 1000 > max_age_ms
            ]
            for key in stale:
                del self._buckets[key]

        if stale:
            logger.debug(f"Swept {len(stale)} stale rate limit bucket(s)")
        return len(stale)

    def _periodic_sweep(self) -> None:
        while not self._shutdown_flag.wait(self._settings.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Rate limit sweep failed: {e}", exc_info=True)

    def shutdown(self) -> None:
        """Stop the sweeper thread."""
        self._shutdown_flag.set()
        if self._sweeper is not None and self._sweeper.is_alive():
            self._sweeper.join(timeout=5)
