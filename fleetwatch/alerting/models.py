"""
FleetWatch - Alerting Data Model

Alerts, notifications, preferences and the query/result types exchanged
between the engine, the dispatcher and the store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, time
from enum import StrEnum
from typing import Any, TypeVar

from fleetwatch.alerting.errors import AlertValidationError

_E = TypeVar("_E", bound=StrEnum)

# =============================================================================
# Enums
# =============================================================================


class AlertType(StrEnum):
    """Operational conditions the core knows how to track."""

    DEVICE_OFFLINE = "device_offline"
    DEVICE_SCREENSHOT_FAILED = "device_screenshot_failed"
    DEVICE_CACHE_STALE = "device_cache_stale"
    DEVICE_ERROR = "device_error"
    SCHEDULE_MISSING_SCENE = "schedule_missing_scene"
    SCHEDULE_CONFLICT = "schedule_conflict"
    DATA_SOURCE_SYNC_FAILED = "data_source_sync_failed"
    SOCIAL_FEED_SYNC_FAILED = "social_feed_sync_failed"
    CONTENT_EXPIRED = "content_expired"
    STORAGE_QUOTA_WARNING = "storage_quota_warning"
    API_RATE_LIMIT = "api_rate_limit"


class AlertSeverity(StrEnum):
    """Alert severity levels, totally ordered info < warning < critical."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AlertSeverity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AlertSeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AlertSeverity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AlertSeverity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    AlertSeverity.INFO: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.CRITICAL: 3,
}


def max_severity(*severities: AlertSeverity | str) -> AlertSeverity:
    """Most severe of the given severities."""
    return max((AlertSeverity(s) for s in severities), key=lambda s: s.rank)


class AlertStatus(StrEnum):
    """Alert lifecycle status."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


ACTIVE_STATUSES = frozenset({AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED})


class NotificationChannel(StrEnum):
    """Notification delivery channels."""

    IN_APP = "in_app"
    EMAIL = "email"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _coerce(enum_cls: type[_E], value: Any, name: str) -> _E:
    """
    Convert a stored text value to its enum member.

    Relational stores hand back plain strings, and ``AlertSeverity`` only
    orders correctly against other members.
    """
    try:
        return enum_cls(value)
    except ValueError:
        raise AlertValidationError(f'invalid {name} "{value}"') from None


def _coerce_optional(enum_cls: type[_E], value: Any, name: str) -> _E | None:
    return None if value is None else _coerce(enum_cls, value, name)


def _coerce_list(enum_cls: type[_E], values: Any, name: str) -> list[_E] | None:
    return None if values is None else [_coerce(enum_cls, v, name) for v in values]


# =============================================================================
# Alerts
# =============================================================================


@dataclass(frozen=True)
class DedupKey:
    """
    Signature of an open alert.

    All four correlation keys take part with null-equals-null semantics:
    a ``None`` key only matches another ``None``.
    """

    tenant_id: str
    type: AlertType
    device_id: str | None = None
    scene_id: str | None = None
    schedule_id: str | None = None
    data_source_id: str | None = None


@dataclass
class Alert:
    """Operator-visible alert row."""

    tenant_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str | None = None
    device_id: str | None = None
    scene_id: str | None = None
    schedule_id: str | None = None
    data_source_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    status: AlertStatus = AlertStatus.OPEN
    occurrences: int = 1
    created_at: datetime = field(default_factory=utcnow)
    last_occurred_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    def __post_init__(self) -> None:
        self.type = _coerce(AlertType, self.type, "type")
        self.severity = _coerce(AlertSeverity, self.severity, "severity")
        self.status = _coerce(AlertStatus, self.status, "status")

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey(
            tenant_id=self.tenant_id,
            type=self.type,
            device_id=self.device_id,
            scene_id=self.scene_id,
            schedule_id=self.schedule_id,
            data_source_id=self.data_source_id,
        )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert alert to dictionary."""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class AlertQuery:
    """
    Filter for listing and bulk-updating alerts.

    Unlike ``DedupKey``, a ``None`` field here is a wildcard.
    """

    ids: list[str] | None = None
    tenant_id: str | None = None
    type: AlertType | None = None
    statuses: frozenset[AlertStatus] | None = None
    severity: AlertSeverity | None = None
    device_id: str | None = None
    scene_id: str | None = None
    schedule_id: str | None = None
    data_source_id: str | None = None
    occurrences: int | None = None

    def matches(self, alert: Alert) -> bool:
        if self.ids is not None and alert.id not in self.ids:
            return False
        if self.statuses is not None and alert.status not in self.statuses:
            return False
        if self.occurrences is not None and alert.occurrences != self.occurrences:
            return False
        for name in (
            "tenant_id",
            "type",
            "severity",
            "device_id",
            "scene_id",
            "schedule_id",
            "data_source_id",
        ):
            expected = getattr(self, name)
            if expected is not None and getattr(alert, name) != expected:
                return False
        return True


@dataclass
class Pagination:
    limit: int = 50
    offset: int = 0


@dataclass
class AlertPage:
    items: list[Alert]
    total: int


@dataclass
class AlertSummary:
    """Counts of open alerts by severity, plus acknowledged."""

    open: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    acknowledged: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class RaiseAlertResult:
    """Outcome of ``AlertEngine.raise_alert``."""

    alert_id: str | None
    is_new: bool
    rate_limited: bool = False
    error: str | None = None

    @property
    def dropped(self) -> bool:
        return self.alert_id is None


# =============================================================================
# Notifications
# =============================================================================


@dataclass
class TenantMember:
    """A user belonging to a tenant, as returned by the store."""

    user_id: str
    tenant_id: str
    role: str
    email: str | None = None
    full_name: str | None = None


@dataclass
class NotificationPreference:
    """
    Per-user, per-tenant delivery policy.

    A ``min_severity`` of None means the configured default
    (``alerting.notifications.default_min_severity``).
    """

    user_id: str
    tenant_id: str
    channel_in_app: bool = True
    channel_email: bool = True
    min_severity: AlertSeverity | None = None
    types_whitelist: list[AlertType] | None = None
    types_blacklist: list[AlertType] | None = None
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    quiet_hours_timezone: str = "UTC"

    def __post_init__(self) -> None:
        self.min_severity = _coerce_optional(AlertSeverity, self.min_severity, "severity")
        self.types_whitelist = _coerce_list(AlertType, self.types_whitelist, "type")
        self.types_blacklist = _coerce_list(AlertType, self.types_blacklist, "type")


@dataclass
class Recipient:
    """Tenant member that passed preference filtering."""

    user_id: str
    email: str | None
    full_name: str | None
    channel_in_app: bool = True
    channel_email: bool = True


@dataclass
class Notification:
    """Per-recipient, per-channel delivery record derived from an alert."""

    user_id: str
    tenant_id: str
    alert_id: str | None
    channel: NotificationChannel
    title: str
    message: str | None = None
    severity: AlertSeverity | None = None
    alert_type: AlertType | None = None
    action_url: str | None = None
    id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    email_sent_at: datetime | None = None

    def __post_init__(self) -> None:
        self.channel = _coerce(NotificationChannel, self.channel, "channel")
        self.severity = _coerce_optional(AlertSeverity, self.severity, "severity")
        self.alert_type = _coerce_optional(AlertType, self.alert_type, "type")


@dataclass
class NotificationQuery:
    """Filter for listing and updating notifications; ``None`` is a wildcard."""

    ids: list[str] | None = None
    user_id: str | None = None
    alert_id: str | None = None
    channel: NotificationChannel | None = None
    unread_only: bool = False

    def matches(self, notification: Notification) -> bool:
        if self.ids is not None and notification.id not in self.ids:
            return False
        if self.user_id is not None and notification.user_id != self.user_id:
            return False
        if self.alert_id is not None and notification.alert_id != self.alert_id:
            return False
        if self.channel is not None and notification.channel != self.channel:
            return False
        if self.unread_only and notification.read_at is not None:
            return False
        return True


@dataclass
class DispatchResult:
    """
    Outcome of a notification fan-out.

    ``error`` is set when the dispatch as a whole failed; per-recipient
    failures only show up in ``failed_count``.
    """

    in_app_count: int = 0
    email_count: int = 0
    failed_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
