"""
FleetWatch - Alerting Metrics

Counters and rolling latency samples for engine operations. Slow operations
are logged as warnings so they surface without a metrics backend.

Usage:
    metrics = MetricsRecorder(config)

    with metrics.timer("raise_alert", {"tenant_id": "t1"}):
        ...

    metrics.increment("alerts_raised")
    snapshot = metrics.snapshot()
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from fleetwatch.shared.config import Settings, get_config

logger = logging.getLogger(__name__)

COUNTERS = (
    "alerts_raised",
    "alerts_coalesced",
    "alerts_resolved",
    "alerts_dropped_rate_limit",
    "alerts_dropped_validation",
    "notifications_sent",
    "notifications_failed",
)


@dataclass
class TimingStats:
    """Aggregate over the retained samples of one operation."""

    avg: float
    min: float
    max: float
    samples: int


@dataclass
class MetricsSnapshot:
    counters: dict[str, int]
    average_timings: dict[str, TimingStats] = field(default_factory=dict)
    slow_operation_threshold_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "average_timings": {
                op: vars(stats).copy() for op, stats in self.average_timings.items()
            },
            "slow_operation_threshold_ms": self.slow_operation_threshold_ms,
        }


class MetricsRecorder:
    """Thread-safe counters and per-operation latency samples."""

    def __init__(self, config: Settings | None = None):
        self.config = config or get_config()
        metrics_config = self.config.alerting.metrics

        self.slow_operation_threshold_ms = metrics_config.slow_operation_threshold_ms
        self.max_samples = metrics_config.max_samples

        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter({name: 0 for name in COUNTERS})
        self._timings: dict[str, deque[float]] = {}

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] += amount

    def get_counter(self, counter: str) -> int:
        with self._lock:
            return self._counters[counter]

    def record_timing(
        self, operation: str, duration_ms: float, context: dict[str, Any] | None = None
    ) -> None:
        """Store a latency sample and warn if it crossed the slow threshold."""
        with self._lock:
            samples = self._timings.setdefault(operation, deque(maxlen=self.max_samples))
            samples.append(duration_ms)
            threshold = self.slow_operation_threshold_ms

        if duration_ms > threshold:
            logger.warning(
                f"Slow operation: {operation} took {duration_ms:.0f}ms",
                extra={
                    **{k: v for k, v in (context or {}).items() if v is not None},
                    "operation": operation,
                    "duration_ms": round(duration_ms, 1),
                    "threshold_ms": threshold,
                },
            )

    @contextmanager
    def timer(self, operation: str, context: dict[str, Any] | None = None) -> Iterator[None]:
        """
        Time the enclosed block, recording the sample even if it raises.

        ``context`` is read when the block exits, so fields added to it inside
        the block appear in the slow-operation log line.
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(operation, (time.perf_counter() - start) * 1000, context)

    def set_slow_operation_threshold(self, threshold_ms: float) -> None:
        with self._lock:
            self.slow_operation_threshold_ms = threshold_ms

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            timings = {
                op: TimingStats(
                    avg=round(sum(samples) / len(samples), 1),
                    min=min(samples),
                    max=max(samples),
                    samples=len(samples),
                )
                for op, samples in self._timings.items()
                if samples
            }
            return MetricsSnapshot(
                counters=dict(self._counters),
                average_timings=timings,
                slow_operation_threshold_ms=self.slow_operation_threshold_ms,
            )

    def reset(self) -> None:
        """Zero all counters and drop all samples."""
        with self._lock:
            self._counters = Counter({name: 0 for name in COUNTERS})
            self._timings.clear()
