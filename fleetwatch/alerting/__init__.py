"""
FleetWatch - Alerting Core

Operational alerting for a fleet of display devices:
- Deduplication and coalescing of repeated conditions
- Rule-based severity escalation
- Per-source rate limiting of new alerts
- Preference-filtered in-app and email notification dispatch

Components:
    - AlertEngine: Raise, coalesce, acknowledge and resolve alerts
    - NotificationDispatcher: Recipient resolution and notification fan-out
    - NotificationInbox: Per-user notification reads and preferences
    - RateLimiter: Fixed-window admission control for new alerts
    - AlertStore: Persistence interface (InMemoryAlertStore for tests/dev)
"""

from fleetwatch.alerting.dispatcher import NotificationDispatcher
from fleetwatch.alerting.engine import AlertEngine
from fleetwatch.alerting.errors import (
    AlertingError,
    AlertValidationError,
    DispatchError,
    DuplicateOpenAlertError,
    StoreError,
)
from fleetwatch.alerting.escalation import EscalationRule, EscalationTrigger, escalate
from fleetwatch.alerting.inbox import NotificationInbox
from fleetwatch.alerting.memory_store import InMemoryAlertStore
from fleetwatch.alerting.metrics import MetricsRecorder
from fleetwatch.alerting.models import (
    Alert,
    AlertQuery,
    AlertSeverity,
    AlertStatus,
    AlertSummary,
    AlertType,
    NotificationChannel,
    NotificationPreference,
    Pagination,
    RaiseAlertResult,
)
from fleetwatch.alerting.rate_limiter import RateLimiter
from fleetwatch.alerting.store import AlertStore

__all__ = [
    "AlertEngine",
    "NotificationDispatcher",
    "NotificationInbox",
    "RateLimiter",
    "MetricsRecorder",
    "AlertStore",
    "InMemoryAlertStore",
    "Alert",
    "AlertQuery",
    "AlertSeverity",
    "AlertStatus",
    "AlertSummary",
    "AlertType",
    "NotificationChannel",
    "NotificationPreference",
    "Pagination",
    "RaiseAlertResult",
    "EscalationRule",
    "EscalationTrigger",
    "escalate",
    "AlertingError",
    "AlertValidationError",
    "DispatchError",
    "DuplicateOpenAlertError",
    "StoreError",
]
