"""
FleetWatch - Alerting Errors

Hierarchy:
    AlertingError
    ├── AlertValidationError   rejected before any mutation
    ├── StoreError             persistence failure, propagated to callers
    │   └── DuplicateOpenAlertError
    └── DispatchError          notification fan-out failure, logged by the engine
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fleetwatch.alerting.models import DedupKey


class AlertingError(Exception):
    """Base class for alerting errors."""


class AlertValidationError(AlertingError):
    """Unknown alert type or severity, or no resolvable tenant."""


class StoreError(AlertingError):
    """The persistence collaborator is unreachable or returned an error."""


class DuplicateOpenAlertError(StoreError):
    """An open alert already exists for the dedup key being inserted."""

    def __init__(self, key: DedupKey):
        super().__init__(f"Open alert already exists for {key}")
        self.key = key


class DispatchError(AlertingError):
    """Recipient resolution or notification write failed."""
