"""
Tests for Alerting Metrics
"""

import logging

import pytest

from fleetwatch.alerting.metrics import COUNTERS, MetricsRecorder


@pytest.fixture
def metrics(test_config):
    return MetricsRecorder(test_config)


def test_counters_start_at_zero(metrics):
    snapshot = metrics.snapshot()

    assert set(snapshot.counters) == set(COUNTERS)
    assert all(value == 0 for value in snapshot.counters.values())


def test_increment(metrics):
    metrics.increment("alerts_raised")
    metrics.increment("notifications_sent", 3)

    assert metrics.get_counter("alerts_raised") == 1
    assert metrics.get_counter("notifications_sent") == 3


def test_timing_stats(metrics):
    for duration in (10.0, 20.0, 30.0):
        metrics.record_timing("raise_alert", duration)

    stats = metrics.snapshot().average_timings["raise_alert"]

    assert stats.avg == 20.0
    assert stats.min == 10.0
    assert stats.max == 30.0
    assert stats.samples == 3


def test_samples_are_bounded(metrics):
    for i in range(metrics.max_samples + 50):
        metrics.record_timing("raise_alert", float(i))

    stats = metrics.snapshot().average_timings["raise_alert"]

    assert stats.samples == metrics.max_samples
    assert stats.min == 50.0


def test_slow_operation_logs_warning(metrics, caplog):
    metrics.set_slow_operation_threshold(100)

    with caplog.at_level(logging.WARNING, logger="fleetwatch.alerting.metrics"):
        metrics.record_timing("raise_alert", 150.0, {"tenant_id": "t1", "device_id": None})
        metrics.record_timing("raise_alert", 50.0)

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert "raise_alert" in record.getMessage()
    assert record.tenant_id == "t1"
    assert record.threshold_ms == 100
    assert not hasattr(record, "device_id")


def test_timer_reads_context_at_exit(metrics, caplog):
    metrics.set_slow_operation_threshold(-1)
    context = {"tenant_id": "t1"}

    with caplog.at_level(logging.WARNING, logger="fleetwatch.alerting.metrics"):
        with metrics.timer("raise_alert", context):
            context["alert_id"] = "a1"

    assert caplog.records[0].alert_id == "a1"
    assert metrics.snapshot().average_timings["raise_alert"].samples == 1


def test_timer_records_on_exception(metrics):
    with pytest.raises(RuntimeError):
        with metrics.timer("raise_alert"):
            raise RuntimeError("boom")

    assert metrics.snapshot().average_timings["raise_alert"].samples == 1


def test_reset(metrics):
    metrics.increment("alerts_raised")
    metrics.record_timing("raise_alert", 1.0)

    metrics.reset()
    snapshot = metrics.snapshot()

    assert snapshot.counters["alerts_raised"] == 0
    assert snapshot.average_timings == {}


def test_snapshot_to_dict(metrics):
    metrics.record_timing("raise_alert", 12.0)

    data = metrics.snapshot().to_dict()

    assert data["average_timings"]["raise_alert"]["samples"] == 1
    assert data["slow_operation_threshold_ms"] == 300
    assert data["counters"]["alerts_raised"] == 0
