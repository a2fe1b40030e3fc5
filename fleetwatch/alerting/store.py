"""
FleetWatch - Alert Store Interface

Abstract persistence collaborator consumed by the engine, the dispatcher
and the inbox. Implementations wrap a relational store and must:

- enforce at most one open alert per ``DedupKey`` (null-equals-null),
  raising ``DuplicateOpenAlertError`` from ``insert_alert`` on conflict
- raise ``StoreError`` for any other failure, including exceeding
  ``store.timeout_seconds``
- return copies, so callers never mutate stored rows in place

Usage:
    class PostgresAlertStore(AlertStore):
        def find_open_alert(self, key: DedupKey) -> Alert | None:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from fleetwatch.alerting.models import (
    Alert,
    AlertQuery,
    DedupKey,
    Notification,
    NotificationPreference,
    NotificationQuery,
    Pagination,
    TenantMember,
)


class AlertStore(ABC):
    """Persistence operations required by the alerting core."""

    # =========================================================================
    # Alerts
    # =========================================================================

    @abstractmethod
    def find_open_alert(self, key: DedupKey) -> Alert | None:
        """Open alert matching every field of ``key`` exactly, if any."""

    @abstractmethod
    def insert_alert(self, alert: Alert) -> Alert:
        """
        Insert a new alert and return it with its store-assigned ``id``.

        Raises:
            DuplicateOpenAlertError: An open alert already holds the dedup key
        """

    @abstractmethod
    def update_alert(self, alert_id: str, fields: dict[str, Any]) -> Alert | None:
        """Apply ``fields`` to one alert; ``None`` if it does not exist."""

    @abstractmethod
    def bulk_update_alerts(self, query: AlertQuery, fields: dict[str, Any]) -> list[Alert]:
        """Apply ``fields`` to every alert matching ``query``; return the updated rows."""

    @abstractmethod
    def list_alerts(self, query: AlertQuery, pagination: Pagination) -> tuple[list[Alert], int]:
        """Page of matching alerts, newest ``last_occurred_at`` first, and the total count."""

    @abstractmethod
    def get_alert_by_id(self, alert_id: str) -> Alert | None:
        """Single alert by id."""

    # =========================================================================
    # Recipients
    # =========================================================================

    @abstractmethod
    def list_tenant_members(self, tenant_id: str, roles: Iterable[str]) -> list[TenantMember]:
        """Members of ``tenant_id`` holding one of ``roles``."""

    @abstractmethod
    def get_notification_preferences(
        self, tenant_id: str, user_ids: Iterable[str]
    ) -> list[NotificationPreference]:
        """Preference rows for the given users; users without a row are omitted."""

    @abstractmethod
    def upsert_notification_preference(
        self, preference: NotificationPreference
    ) -> NotificationPreference:
        """Insert or replace the row for ``(user_id, tenant_id)``."""

    # =========================================================================
    # Notifications
    # =========================================================================

    @abstractmethod
    def insert_notification(self, notification: Notification) -> Notification:
        """Insert a notification and return it with its ``id``."""

    @abstractmethod
    def list_notifications(self, query: NotificationQuery, limit: int) -> list[Notification]:
        """Matching notifications, newest first."""

    @abstractmethod
    def count_notifications(self, query: NotificationQuery) -> int:
        """Number of matching notifications."""

    @abstractmethod
    def update_notifications(
        self, query: NotificationQuery, fields: dict[str, Any]
    ) -> list[Notification]:
        """Apply ``fields`` to every matching notification; return the updated rows."""
