"""
FleetWatch - Severity Escalation

Pure rule evaluation deciding whether a coalesced alert should be promoted
to critical. Each rule watches one trigger:

- minutes_offline: ``meta["minutes_offline"] >= threshold``
- hours_stale:     ``meta["hours_stale"] >= threshold``
- failure_count:   ``meta["failure_count"] >= threshold``
- occurrences:     ``occurrences >= threshold``, and when ``window_hours`` is
                   set, the alert must also be younger than the window

Usage:
    rules = rules_from_config(config)
    severity = escalate(
        AlertType.DEVICE_OFFLINE,
        AlertSeverity.WARNING,
        meta={"minutes_offline": 35},
        occurrences=4,
        created_at=alert.created_at,
        rules=rules,
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from fleetwatch.alerting.models import AlertSeverity, AlertType, utcnow
from fleetwatch.shared.config import Settings, get_config


class EscalationTrigger(StrEnum):
    MINUTES_OFFLINE = "minutes_offline"
    HOURS_STALE = "hours_stale"
    FAILURE_COUNT = "failure_count"
    OCCURRENCES = "occurrences"


@dataclass(frozen=True)
class EscalationRule:
    trigger: EscalationTrigger
    threshold: float
    window_hours: float | None = None


EscalationRules = Mapping[str, Sequence[EscalationRule]]

DEFAULT_ESCALATION_RULES: EscalationRules = {
    AlertType.DEVICE_OFFLINE: (EscalationRule(EscalationTrigger.MINUTES_OFFLINE, 30),),
    AlertType.DEVICE_SCREENSHOT_FAILED: (EscalationRule(EscalationTrigger.FAILURE_COUNT, 5),),
    AlertType.DATA_SOURCE_SYNC_FAILED: (
        EscalationRule(EscalationTrigger.OCCURRENCES, 3, window_hours=24),
    ),
    AlertType.SOCIAL_FEED_SYNC_FAILED: (
        EscalationRule(EscalationTrigger.OCCURRENCES, 5, window_hours=24),
    ),
    AlertType.DEVICE_CACHE_STALE: (EscalationRule(EscalationTrigger.HOURS_STALE, 24),),
}


def rules_from_config(config: Settings | None = None) -> dict[str, tuple[EscalationRule, ...]]:
    """Build the rule table from ``alerting.escalation.rules``."""
    config = config or get_config()
    return {
        alert_type: tuple(
            EscalationRule(
                trigger=EscalationTrigger(rule.trigger),
                threshold=rule.threshold,
                window_hours=rule.window_hours,
            )
            for rule in rules
        )
        for alert_type, rules in config.alerting.escalation.rules.items()
    }


def _meta_number(meta: Mapping[str, Any], key: str) -> float | None:
    value = meta.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _rule_fires(
    rule: EscalationRule,
    meta: Mapping[str, Any],
    occurrences: int,
    created_at: datetime | None,
    now: datetime,
) -> bool:
    if rule.trigger == EscalationTrigger.OCCURRENCES:
        if occurrences < rule.threshold:
            return False
        if rule.window_hours is None or created_at is None:
            return True
        return now - created_at <= timedelta(hours=rule.window_hours)

    observed = _meta_number(meta, rule.trigger.value)
    return observed is not None and observed >= rule.threshold


def escalate(
    alert_type: str,
    current_severity: AlertSeverity,
    meta: Mapping[str, Any] | None,
    occurrences: int,
    created_at: datetime | None,
    rules: EscalationRules | None = None,
    now: datetime | None = None,
) -> AlertSeverity:
    """
    Return the severity an alert should have after applying escalation rules.

    Args:
        alert_type: Alert type whose rules apply
        current_severity: Severity stored on the alert
        meta: Merged alert metadata
        occurrences: Occurrence count including the current one
        created_at: When the alert was first created
        rules: Rule table keyed by alert type (defaults to the built-in table)
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        CRITICAL if any rule for the type fires, else ``current_severity``
    """
    if current_severity == AlertSeverity.CRITICAL:
        return current_severity

    table = DEFAULT_ESCALATION_RULES if rules is None else rules
    type_rules = table.get(alert_type)
    if not type_rules:
        return current_severity

    now = now or utcnow()
    meta = meta or {}
    for rule in type_rules:
        if _rule_fires(rule, meta, occurrences, created_at, now):
            return AlertSeverity.CRITICAL

    return current_severity
