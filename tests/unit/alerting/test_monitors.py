"""
Tests for Monitor Alert Helpers
"""

from types import SimpleNamespace

import pytest

from fleetwatch.alerting.models import AlertSeverity, AlertStatus, AlertType
from fleetwatch.alerting.monitors import (
    raise_cache_stale_alert,
    raise_data_source_sync_failed_alert,
    raise_device_offline_alert,
    raise_schedule_missing_scene_alert,
    raise_screenshot_failed_alert,
    raise_social_feed_sync_failed_alert,
    resolve_data_source_synced,
    resolve_device_online,
    resolve_screenshot_recovered,
)

TENANT_ID = "tenant-1"


@pytest.fixture
def device():
    return {
        "id": "d1",
        "name": "Lobby",
        "tenant_id": TENANT_ID,
        "last_heartbeat": "2025-01-15T11:40:00Z",
    }


class SyncError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "minutes,expected",
    [
        (5, AlertSeverity.INFO),
        (15, AlertSeverity.WARNING),
        (59, AlertSeverity.WARNING),
        (60, AlertSeverity.CRITICAL),
    ],
)
def test_device_offline_severity(engine, device, minutes, expected):
    result = raise_device_offline_alert(engine, device, minutes)

    assert engine.get_alert(result.alert_id).severity == expected


def test_device_offline_alert_fields(engine, device):
    result = raise_device_offline_alert(engine, device, 20)

    alert = engine.get_alert(result.alert_id)
    assert alert.type == AlertType.DEVICE_OFFLINE
    assert alert.title == 'Device "Lobby" is offline'
    assert alert.message == "Device has been offline for 20 minutes"
    assert alert.device_id == "d1"
    assert alert.meta == {
        "device_name": "Lobby",
        "minutes_offline": 20,
        "last_heartbeat": "2025-01-15T11:40:00Z",
    }


def test_device_offline_accepts_objects(engine):
    device = SimpleNamespace(id="d9", name="Atrium", tenant_id=TENANT_ID)

    result = raise_device_offline_alert(engine, device, 20)

    alert = engine.get_alert(result.alert_id)
    assert alert.device_id == "d9"
    assert alert.meta["last_heartbeat"] is None


def test_device_offline_then_online(engine, device):
    results = [raise_device_offline_alert(engine, device, m) for m in (20, 25, 35)]

    alert = engine.get_alert(results[0].alert_id)
    assert alert.occurrences == 3
    assert alert.severity == AlertSeverity.CRITICAL

    assert resolve_device_online(engine, device) == 1
    alert = engine.get_alert(results[0].alert_id)
    assert alert.status == AlertStatus.RESOLVED
    assert alert.resolution_notes == "Device is back online"


def test_screenshot_failed(engine, device):
    warning = raise_screenshot_failed_alert(engine, device, 2, "timeout")
    assert engine.get_alert(warning.alert_id).severity == AlertSeverity.WARNING

    raise_screenshot_failed_alert(engine, device, 5, "timeout")
    alert = engine.get_alert(warning.alert_id)
    assert alert.severity == AlertSeverity.CRITICAL
    assert alert.meta["failure_count"] == 5
    assert alert.title == 'Screenshot capture failing for "Lobby"'

    assert resolve_screenshot_recovered(engine, device) == 1


def test_cache_stale(engine, device):
    result = raise_cache_stale_alert(engine, device, 3)

    alert = engine.get_alert(result.alert_id)
    assert alert.type == AlertType.DEVICE_CACHE_STALE
    assert alert.severity == AlertSeverity.WARNING
    assert alert.meta == {"device_name": "Lobby", "hours_stale": 3}

    critical = raise_cache_stale_alert(engine, {**device, "id": "d2"}, 24)
    assert engine.get_alert(critical.alert_id).severity == AlertSeverity.CRITICAL


# ---------------------------------------------------------------------------
# Data sources, feeds and schedules
# ---------------------------------------------------------------------------


def test_data_source_sync_failed(engine):
    source = {"id": "ds1", "name": "Menu", "tenant_id": TENANT_ID, "type": "sheets"}

    result = raise_data_source_sync_failed_alert(engine, source, SyncError("403", "forbidden"))

    alert = engine.get_alert(result.alert_id)
    assert alert.data_source_id == "ds1"
    assert alert.severity == AlertSeverity.WARNING
    assert alert.message == "403"
    assert alert.meta["error_code"] == "forbidden"
    assert alert.meta["data_source_type"] == "sheets"

    assert resolve_data_source_synced(engine, source) == 1


def test_data_source_sync_failed_without_error(engine):
    source = {"id": "ds1", "name": "Menu", "tenant_id": TENANT_ID}

    result = raise_data_source_sync_failed_alert(engine, source)

    assert engine.get_alert(result.alert_id).message == "Unknown sync error"


def test_social_feed_sync_failed_coalesces_per_tenant(engine):
    account = {"id": "acc1", "provider": "instagram", "tenant_id": TENANT_ID}

    first = raise_social_feed_sync_failed_alert(engine, account, "token expired")
    second = raise_social_feed_sync_failed_alert(engine, {**account, "id": "acc2"}, None)

    assert second.alert_id == first.alert_id
    alert = engine.get_alert(first.alert_id)
    assert alert.title == "Social feed sync failed for instagram"
    assert alert.meta["account_id"] == "acc2"
    assert alert.message == "Failed to sync social media feed"


def test_schedule_missing_scene(engine):
    schedule = {"id": "sc1", "name": "Weekdays", "tenant_id": TENANT_ID}

    result = raise_schedule_missing_scene_alert(engine, schedule, ["s1", "s2"])

    alert = engine.get_alert(result.alert_id)
    assert alert.schedule_id == "sc1"
    assert alert.message == "2 scene(s) referenced but not found"
    assert alert.meta["missing_scene_ids"] == ["s1", "s2"]
