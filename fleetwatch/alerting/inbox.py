"""
FleetWatch - Notification Inbox

Read-side notification operations for the presentation layer, plus the
notification preference settings each user manages for themselves.

Usage:
    inbox = NotificationInbox(store, config)

    unread = inbox.get_notifications(user_id, unread_only=True)
    inbox.mark_as_read(user_id, [n.id for n in unread])
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fleetwatch.alerting.errors import AlertValidationError
from fleetwatch.alerting.models import (
    AlertSeverity,
    Notification,
    NotificationChannel,
    NotificationPreference,
    NotificationQuery,
    utcnow,
)
from fleetwatch.alerting.store import AlertStore
from fleetwatch.shared.config import Settings, get_config

logger = logging.getLogger(__name__)


class NotificationInbox:
    """Per-user notification listing, read tracking and preferences."""

    def __init__(
        self,
        store: AlertStore,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or get_config()
        self.default_min_severity = AlertSeverity(
            self.config.alerting.notifications.default_min_severity
        )
        self._clock = clock

    # =========================================================================
    # Notifications
    # =========================================================================

    def get_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        channel: NotificationChannel = NotificationChannel.IN_APP,
        limit: int = 50,
    ) -> list[Notification]:
        """Newest notifications for a user on one channel."""
        return self.store.list_notifications(
            NotificationQuery(user_id=user_id, channel=channel, unread_only=unread_only),
            limit,
        )

    def get_unread_count(self, user_id: str) -> int:
        return self.store.count_notifications(
            NotificationQuery(user_id=user_id, channel=NotificationChannel.IN_APP, unread_only=True)
        )

    def mark_as_read(self, user_id: str, notification_ids: list[str] | None = None) -> int:
        """
        Mark unread in-app notifications as read.

        Args:
            user_id: Owner of the notifications
            notification_ids: Specific notifications, or None/empty for all unread

        Returns:
            Number of notifications marked read
        """
        updated = self.store.update_notifications(
            NotificationQuery(
                ids=notification_ids or None,
                user_id=user_id,
                channel=NotificationChannel.IN_APP,
                unread_only=True,
            ),
            {"read_at": self._clock()},
        )
        return len(updated)

    def mark_as_clicked(self, notification_id: str) -> bool:
        """Record that a notification was opened. Also marks it read."""
        now = self._clock()
        updated = self.store.update_notifications(
            NotificationQuery(ids=[notification_id]),
            {"clicked_at": now, "read_at": now},
        )
        return bool(updated)

    def mark_email_sent(self, notification_id: str) -> bool:
        """Called by the mail worker once an email notification went out."""
        updated = self.store.update_notifications(
            NotificationQuery(ids=[notification_id], channel=NotificationChannel.EMAIL),
            {"email_sent_at": self._clock()},
        )
        if updated:
            logger.info("Email sent", extra={"notification_id": notification_id})
        return bool(updated)

    # =========================================================================
    # Preferences
    # =========================================================================

    def get_notification_preferences(
        self, user_id: str, tenant_id: str
    ) -> NotificationPreference | None:
        prefs = self.store.get_notification_preferences(tenant_id, [user_id])
        return prefs[0] if prefs else None

    def save_notification_preferences(
        self, preference: NotificationPreference
    ) -> NotificationPreference:
        """
        Validate and upsert a user's preferences.

        A missing severity floor is stored as the configured default.

        Raises:
            AlertValidationError: Unknown severity, alert type or timezone
        """
        # Re-running __post_init__ re-validates fields assigned after construction
        preference = dataclasses.replace(
            preference, min_severity=preference.min_severity or self.default_min_severity
        )

        try:
            ZoneInfo(preference.quiet_hours_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise AlertValidationError(
                f"Unknown timezone: {preference.quiet_hours_timezone}"
            ) from e

        if (preference.quiet_hours_start is None) != (preference.quiet_hours_end is None):
            raise AlertValidationError("Quiet hours need both a start and an end")

        return self.store.upsert_notification_preference(preference)
