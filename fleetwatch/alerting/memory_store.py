"""
FleetWatch - In-Memory Alert Store

Process-local ``AlertStore`` for tests and local development. Mirrors the
relational store's guarantees: a unique open-alert index on the dedup key,
atomic conditional bulk updates, and copies on every read.

Usage:
    store = InMemoryAlertStore(config)
    store.add_member(TenantMember(user_id="u1", tenant_id="t1", role="owner"))

    engine = AlertEngine(store)
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import fields as dataclass_fields
from datetime import datetime
from typing import Any

from fleetwatch.alerting.errors import DuplicateOpenAlertError, StoreError
from fleetwatch.alerting.models import (
    Alert,
    AlertQuery,
    AlertStatus,
    DedupKey,
    Notification,
    NotificationPreference,
    NotificationQuery,
    Pagination,
    TenantMember,
    utcnow,
)
from fleetwatch.alerting.store import AlertStore
from fleetwatch.shared.config import Settings, get_config

logger = logging.getLogger(__name__)

_ALERT_FIELDS = frozenset(f.name for f in dataclass_fields(Alert))
_NOTIFICATION_FIELDS = frozenset(f.name for f in dataclass_fields(Notification))


def _apply(row: Any, fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise StoreError(f"Unknown column(s): {sorted(unknown)}")
    for name, value in fields.items():
        setattr(row, name, copy.deepcopy(value))


class InMemoryAlertStore(AlertStore):
    """
    Thread-safe dict-backed store.

    Every operation waits at most ``store.timeout_seconds`` for the store
    lock and raises ``StoreError`` when it cannot get it.
    """

    def __init__(
        self,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or get_config()
        self.timeout_seconds = self.config.store.timeout_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._alerts: dict[str, Alert] = {}
        self._open_index: dict[DedupKey, str] = {}
        self._members: list[TenantMember] = []
        self._preferences: dict[tuple[str, str], NotificationPreference] = {}
        self._notifications: dict[str, Notification] = {}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise StoreError(f"Store lock not acquired within {self.timeout_seconds}s")
        try:
            yield
        finally:
            self._lock.release()

    # =========================================================================
    # Alerts
    # =========================================================================

    def find_open_alert(self, key: DedupKey) -> Alert | None:
        with self._locked():
            alert_id = self._open_index.get(key)
            return copy.deepcopy(self._alerts[alert_id]) if alert_id else None

    def insert_alert(self, alert: Alert) -> Alert:
        with self._locked():
            row = copy.deepcopy(alert)
            row.id = row.id or str(uuid.uuid4())
            if row.status == AlertStatus.OPEN:
                if row.dedup_key in self._open_index:
                    raise DuplicateOpenAlertError(row.dedup_key)
                self._open_index[row.dedup_key] = row.id
            self._alerts[row.id] = row
            return copy.deepcopy(row)

    def update_alert(self, alert_id: str, fields: dict[str, Any]) -> Alert | None:
        with self._locked():
            row = self._alerts.get(alert_id)
            if row is None:
                return None
            self._update_row(row, fields)
            return copy.deepcopy(row)

    def bulk_update_alerts(self, query: AlertQuery, fields: dict[str, Any]) -> list[Alert]:
        with self._locked():
            matched = [row for row in self._alerts.values() if query.matches(row)]
            for row in matched:
                self._update_row(row, fields)
            return copy.deepcopy(matched)

    def _update_row(self, row: Alert, fields: dict[str, Any]) -> None:
        was_open = row.status == AlertStatus.OPEN
        _apply(row, {**fields, "updated_at": self._clock()}, _ALERT_FIELDS)
        if was_open and row.status != AlertStatus.OPEN:
            self._open_index.pop(row.dedup_key, None)

    def list_alerts(self, query: AlertQuery, pagination: Pagination) -> tuple[list[Alert], int]:
        with self._locked():
            matched = sorted(
                (row for row in self._alerts.values() if query.matches(row)),
                key=lambda row: row.last_occurred_at,
                reverse=True,
            )
            page = matched[pagination.offset : pagination.offset + pagination.limit]
            return copy.deepcopy(page), len(matched)

    def get_alert_by_id(self, alert_id: str) -> Alert | None:
        with self._locked():
            row = self._alerts.get(alert_id)
            return copy.deepcopy(row) if row else None

    # =========================================================================
    # Recipients
    # =========================================================================

    def add_member(self, member: TenantMember) -> None:
        with self._locked():
            self._members.append(copy.deepcopy(member))

    def list_tenant_members(self, tenant_id: str, roles: Iterable[str]) -> list[TenantMember]:
        wanted = set(roles)
        with self._locked():
            return [
                copy.deepcopy(m)
                for m in self._members
                if m.tenant_id == tenant_id and m.role in wanted
            ]

    def get_notification_preferences(
        self, tenant_id: str, user_ids: Iterable[str]
    ) -> list[NotificationPreference]:
        with self._locked():
            return [
                copy.deepcopy(self._preferences[(user_id, tenant_id)])
                for user_id in user_ids
                if (user_id, tenant_id) in self._preferences
            ]

    def upsert_notification_preference(
        self, preference: NotificationPreference
    ) -> NotificationPreference:
        with self._locked():
            self._preferences[(preference.user_id, preference.tenant_id)] = copy.deepcopy(
                preference
            )
            return copy.deepcopy(preference)

    # =========================================================================
    # Notifications
    # =========================================================================

    def insert_notification(self, notification: Notification) -> Notification:
        with self._locked():
            row = copy.deepcopy(notification)
            row.id = row.id or str(uuid.uuid4())
            self._notifications[row.id] = row
            return copy.deepcopy(row)

    def list_notifications(self, query: NotificationQuery, limit: int) -> list[Notification]:
        with self._locked():
            matched = sorted(
                (n for n in self._notifications.values() if query.matches(n)),
                key=lambda n: n.created_at,
                reverse=True,
            )
            return copy.deepcopy(matched[:limit])

    def count_notifications(self, query: NotificationQuery) -> int:
        with self._locked():
            return sum(1 for n in self._notifications.values() if query.matches(n))

    def update_notifications(
        self, query: NotificationQuery, fields: dict[str, Any]
    ) -> list[Notification]:
        with self._locked():
            matched = [n for n in self._notifications.values() if query.matches(n)]
            for row in matched:
                _apply(row, fields, _NOTIFICATION_FIELDS)
            return copy.deepcopy(matched)
