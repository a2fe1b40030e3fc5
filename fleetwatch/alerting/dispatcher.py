"""
FleetWatch - Notification Dispatcher

Fans an alert out to the tenant members who should hear about it:
- Recipients are tenant members with an elevated role
- Each recipient's preferences filter by severity floor, type lists and quiet hours
- In-app rows are written for every dispatch; email rows only for new alerts
- Email rows are queued for an external mail worker, never sent from here

A failure writing one recipient's notification is logged and counted; the
remaining recipients still get theirs.

Usage:
    dispatcher = NotificationDispatcher(store, config)

    result = dispatcher.dispatch_alert_notifications(alert, is_new_alert=True)
    result = dispatcher.dispatch_resolved_notification(alert, "Device back online")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fleetwatch.alerting.errors import DispatchError, StoreError
from fleetwatch.alerting.models import (
    Alert,
    AlertSeverity,
    DispatchResult,
    Notification,
    NotificationChannel,
    NotificationPreference,
    Recipient,
    utcnow,
)
from fleetwatch.alerting.store import AlertStore
from fleetwatch.shared.config import Settings, get_config

logger = logging.getLogger(__name__)

RESOLVED_ACTION_URL = "/alerts"


# =============================================================================
# Preference Filtering
# =============================================================================


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def is_in_quiet_hours(preference: NotificationPreference, now: datetime) -> bool:
    """
    Check whether ``now`` falls inside the recipient's quiet window.

    The window is evaluated in the recipient's timezone at minute resolution
    and is inclusive on both ends. A start later than the end wraps past
    midnight (e.g. 22:00-06:00).
    """
    start, end = preference.quiet_hours_start, preference.quiet_hours_end
    if start is None or end is None:
        return False

    try:
        local_now = now.astimezone(ZoneInfo(preference.quiet_hours_timezone or "UTC"))
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(
            f"Invalid quiet hours timezone: {e}",
            extra={
                "user_id": preference.user_id,
                "quiet_hours_timezone": preference.quiet_hours_timezone,
            },
        )
        return False

    current = _minutes(local_now.time())
    start_minutes, end_minutes = _minutes(start), _minutes(end)

    if start_minutes > end_minutes:
        return current >= start_minutes or current <= end_minutes
    return start_minutes <= current <= end_minutes


def should_notify_user(
    preference: NotificationPreference | None,
    alert: Alert,
    now: datetime,
    default_min_severity: AlertSeverity = AlertSeverity.WARNING,
) -> bool:
    """
    Apply a recipient's preferences to an alert. No row means notify.

    ``default_min_severity`` is the floor for a row without its own.
    """
    if preference is None:
        return True

    floor = AlertSeverity(preference.min_severity or default_min_severity)
    if AlertSeverity(alert.severity) < floor:
        return False

    if preference.types_whitelist:
        if alert.type not in preference.types_whitelist:
            return False
    elif preference.types_blacklist and alert.type in preference.types_blacklist:
        return False

    return not is_in_quiet_hours(preference, now)


def get_alert_action_url(alert: Alert) -> str:
    """Where an in-app notification for ``alert`` navigates when clicked."""
    if alert.device_id:
        return f"/screens?highlight={alert.device_id}"
    if alert.scene_id:
        return f"/scenes/{alert.scene_id}"
    if alert.schedule_id:
        return f"/schedules/{alert.schedule_id}"
    if alert.data_source_id:
        return f"/data-sources?highlight={alert.data_source_id}"
    return RESOLVED_ACTION_URL


# =============================================================================
# Dispatcher
# =============================================================================


class NotificationDispatcher:
    """Resolves recipients for an alert and writes their notification rows."""

    def __init__(
        self,
        store: AlertStore,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize dispatcher.

        Args:
            store: Persistence collaborator
            config: Configuration object (uses default if not provided)
            clock: Current UTC time, injectable for tests
        """
        self.store = store
        self.config = config or get_config()
        notifications = self.config.alerting.notifications
        self.recipient_roles = list(notifications.recipient_roles)
        self.default_min_severity = AlertSeverity(notifications.default_min_severity)
        self._clock = clock

    def get_users_to_notify(self, alert: Alert) -> list[Recipient]:
        """
        Resolve the recipients for an alert after preference filtering.

        Raises:
            DispatchError: Members or preferences could not be loaded
        """
        try:
            members = self.store.list_tenant_members(alert.tenant_id, self.recipient_roles)
            preferences = self.store.get_notification_preferences(
                alert.tenant_id, [m.user_id for m in members]
            )
        except StoreError as e:
            raise DispatchError(f"Could not resolve recipients: {e}") from e

        prefs_by_user = {p.user_id: p for p in preferences}
        now = self._clock()

        recipients = []
        for member in members:
            pref = prefs_by_user.get(member.user_id)
            if not should_notify_user(pref, alert, now, self.default_min_severity):
                continue
            recipients.append(
                Recipient(
                    user_id=member.user_id,
                    email=member.email,
                    full_name=member.full_name,
                    channel_in_app=pref.channel_in_app if pref else True,
                    channel_email=pref.channel_email if pref else True,
                )
            )
        return recipients

    def dispatch_alert_notifications(self, alert: Alert, is_new_alert: bool) -> DispatchResult:
        """
        Notify eligible recipients about a new or coalesced alert.

        Args:
            alert: The alert as stored after the raise
            is_new_alert: True for a newly created alert; coalesced alerts
                only get in-app notifications

        Returns:
            Counts of written in-app and email rows, and failed writes
        """
        result = DispatchResult()
        action_url = get_alert_action_url(alert)

        for recipient in self.get_users_to_notify(alert):
            if recipient.channel_in_app:
                self._write(
                    result,
                    Notification(
                        user_id=recipient.user_id,
                        tenant_id=alert.tenant_id,
                        alert_id=alert.id,
                        channel=NotificationChannel.IN_APP,
                        title=alert.title,
                        message=alert.message,
                        severity=alert.severity,
                        alert_type=alert.type,
                        action_url=action_url,
                    ),
                )

            if recipient.channel_email and is_new_alert:
                if self._write(
                    result,
                    Notification(
                        user_id=recipient.user_id,
                        tenant_id=alert.tenant_id,
                        alert_id=alert.id,
                        channel=NotificationChannel.EMAIL,
                        title=alert.title,
                        message=alert.message,
                        severity=alert.severity,
                        alert_type=alert.type,
                    ),
                ):
                    logger.info(
                        "Email queued",
                        extra={
                            "recipient": recipient.email or recipient.user_id,
                            "alert_id": alert.id,
                        },
                    )

        logger.info(
            "Dispatched alert notifications",
            extra={
                "alert_id": alert.id,
                "in_app_count": result.in_app_count,
                "email_count": result.email_count,
                "failed_count": result.failed_count,
            },
        )
        return result

    def dispatch_resolved_notification(self, alert: Alert, notes: str | None) -> DispatchResult:
        """
        Tell recipients an alert has been resolved. In-app only.

        Info alerts are skipped entirely.
        """
        result = DispatchResult()
        if alert.severity == AlertSeverity.INFO:
            return result

        for recipient in self.get_users_to_notify(alert):
            if not recipient.channel_in_app:
                continue
            self._write(
                result,
                Notification(
                    user_id=recipient.user_id,
                    tenant_id=alert.tenant_id,
                    alert_id=alert.id,
                    channel=NotificationChannel.IN_APP,
                    title=f"Resolved: {alert.title}",
                    message=notes or "Issue resolved",
                    severity=AlertSeverity.INFO,
                    alert_type=alert.type,
                    action_url=RESOLVED_ACTION_URL,
                ),
            )

        logger.info(
            "Dispatched resolved notification",
            extra={"alert_id": alert.id, "in_app_count": result.in_app_count},
        )
        return result

    def _write(self, result: DispatchResult, notification: Notification) -> bool:
        """Insert one notification, counting it in ``result``. Never raises."""
        try:
            self.store.insert_notification(notification)
        except Exception as e:
            result.failed_count += 1
            logger.error(
                f"Failed to write {notification.channel} notification: {e}",
                extra={"user_id": notification.user_id, "alert_id": notification.alert_id},
                exc_info=True,
            )
            return False

        if notification.channel == NotificationChannel.EMAIL:
            result.email_count += 1
        else:
            result.in_app_count += 1
        return True
