"""
FleetWatch - Monitor Alert Helpers

Convenience wrappers used by device, data-source and social-feed monitors.
Each helper maps an observed condition to an alert type, severity, title
and meta, then delegates to the engine.

Entities may be mappings or objects exposing the same attributes
(``id``, ``name``, ``tenant_id`` and helper-specific fields).

Usage:
    from fleetwatch.alerting.monitors import (
        raise_device_offline_alert,
        resolve_device_online,
    )

    raise_device_offline_alert(engine, device, minutes_offline=20)
    resolve_device_online(engine, device)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fleetwatch.alerting.engine import AlertEngine
from fleetwatch.alerting.models import AlertSeverity, AlertType, RaiseAlertResult


def _field(entity: Any, name: str, default: Any = None) -> Any:
    if isinstance(entity, Mapping):
        return entity.get(name, default)
    return getattr(entity, name, default)


def _error_message(error: BaseException | str | None) -> str | None:
    if error is None:
        return None
    return str(error) or type(error).__name__


# =============================================================================
# Devices
# =============================================================================


def raise_device_offline_alert(
    engine: AlertEngine, device: Any, minutes_offline: float
) -> RaiseAlertResult:
    """Device missed its heartbeat. Critical after an hour, warning after 15 minutes."""
    if minutes_offline >= 60:
        severity = AlertSeverity.CRITICAL
    elif minutes_offline >= 15:
        severity = AlertSeverity.WARNING
    else:
        severity = AlertSeverity.INFO

    name = _field(device, "name")
    return engine.raise_alert(
        alert_type=AlertType.DEVICE_OFFLINE,
        severity=severity,
        title=f'Device "{name}" is offline',
        message=f"Device has been offline for {minutes_offline} minutes",
        tenant_id=_field(device, "tenant_id"),
        device_id=_field(device, "id"),
        meta={
            "device_name": name,
            "minutes_offline": minutes_offline,
            "last_heartbeat": _field(device, "last_heartbeat"),
        },
    )


def raise_screenshot_failed_alert(
    engine: AlertEngine,
    device: Any,
    failure_count: int,
    last_error: str | None = None,
) -> RaiseAlertResult:
    """Consecutive screenshot capture failures on a device."""
    name = _field(device, "name")
    return engine.raise_alert(
        alert_type=AlertType.DEVICE_SCREENSHOT_FAILED,
        severity=AlertSeverity.CRITICAL if failure_count >= 5 else AlertSeverity.WARNING,
        title=f'Screenshot capture failing for "{name}"',
        message=f"{failure_count} consecutive screenshot failures",
        tenant_id=_field(device, "tenant_id"),
        device_id=_field(device, "id"),
        meta={
            "device_name": name,
            "failure_count": failure_count,
            "last_error": last_error,
        },
    )


def raise_cache_stale_alert(
    engine: AlertEngine, device: Any, hours_stale: float
) -> RaiseAlertResult:
    name = _field(device, "name")
    return engine.raise_alert(
        alert_type=AlertType.DEVICE_CACHE_STALE,
        severity=AlertSeverity.CRITICAL if hours_stale >= 24 else AlertSeverity.WARNING,
        title=f'Device "{name}" cache is stale',
        message=f"Cache has not been updated for {hours_stale} hours",
        tenant_id=_field(device, "tenant_id"),
        device_id=_field(device, "id"),
        meta={"device_name": name, "hours_stale": hours_stale},
    )


def resolve_device_online(engine: AlertEngine, device: Any) -> int:
    """Device heartbeat is back; clear its offline alerts."""
    return engine.auto_resolve_alert(
        AlertType.DEVICE_OFFLINE,
        tenant_id=_field(device, "tenant_id"),
        device_id=_field(device, "id"),
        notes="Device is back online",
    )


def resolve_screenshot_recovered(engine: AlertEngine, device: Any) -> int:
    return engine.auto_resolve_alert(
        AlertType.DEVICE_SCREENSHOT_FAILED,
        tenant_id=_field(device, "tenant_id"),
        device_id=_field(device, "id"),
        notes="Screenshot capture recovered",
    )


# =============================================================================
# Data sources and feeds
# =============================================================================


def raise_data_source_sync_failed_alert(
    engine: AlertEngine, data_source: Any, error: BaseException | str | None = None
) -> RaiseAlertResult:
    """
    A data source sync attempt failed.

    Always raised as a warning; repeated failures escalate through the
    occurrences rule for the type.
    """
    name = _field(data_source, "name")
    error_message = _error_message(error)
    return engine.raise_alert(
        alert_type=AlertType.DATA_SOURCE_SYNC_FAILED,
        severity=AlertSeverity.WARNING,
        title=f'Data source "{name}" sync failed',
        message=error_message or "Unknown sync error",
        tenant_id=_field(data_source, "tenant_id"),
        data_source_id=_field(data_source, "id"),
        meta={
            "data_source_name": name,
            "data_source_type": _field(data_source, "type"),
            "error_message": error_message,
            "error_code": getattr(error, "code", None),
        },
    )


def resolve_data_source_synced(engine: AlertEngine, data_source: Any) -> int:
    return engine.auto_resolve_alert(
        AlertType.DATA_SOURCE_SYNC_FAILED,
        tenant_id=_field(data_source, "tenant_id"),
        data_source_id=_field(data_source, "id"),
        notes="Data source sync succeeded",
    )


def raise_social_feed_sync_failed_alert(
    engine: AlertEngine, account: Any, error: BaseException | str | None = None
) -> RaiseAlertResult:
    """
    A social media account failed to sync.

    Social accounts are not a correlation key, so these alerts coalesce per
    tenant; the account is recorded in meta.
    """
    provider = _field(account, "provider")
    error_message = _error_message(error)
    return engine.raise_alert(
        alert_type=AlertType.SOCIAL_FEED_SYNC_FAILED,
        severity=AlertSeverity.WARNING,
        title=f"Social feed sync failed for {provider}",
        message=error_message or "Failed to sync social media feed",
        tenant_id=_field(account, "tenant_id"),
        meta={
            "account_id": _field(account, "id"),
            "provider": provider,
            "account_name": _field(account, "account_name"),
            "error_message": error_message,
        },
    )


# =============================================================================
# Schedules
# =============================================================================


def raise_schedule_missing_scene_alert(
    engine: AlertEngine, schedule: Any, missing_scene_ids: list[str]
) -> RaiseAlertResult:
    name = _field(schedule, "name")
    return engine.raise_alert(
        alert_type=AlertType.SCHEDULE_MISSING_SCENE,
        severity=AlertSeverity.WARNING,
        title=f'Schedule "{name}" has missing scenes',
        message=f"{len(missing_scene_ids)} scene(s) referenced but not found",
        tenant_id=_field(schedule, "tenant_id"),
        schedule_id=_field(schedule, "id"),
        meta={"schedule_name": name, "missing_scene_ids": list(missing_scene_ids)},
    )
