"""
FleetWatch - Alert Engine

Core service for raising, coalescing and managing operational alerts:
- Deduplication: one open alert per (tenant, type, device, scene, schedule, data source)
- Coalescing: repeats bump occurrences, merge meta and may escalate severity
- Rate limiting: caps *new* alerts per (type, source) per window
- Auto-resolve: monitors clear alerts once the condition goes away
- Notification dispatch: best-effort, never fails the alert operation

Usage:
    engine = AlertEngine(store, config)

    result = engine.raise_alert(
        alert_type="device_offline",
        severity="warning",
        title='Device "Lobby" is offline',
        tenant_id=tenant_id,
        device_id=device_id,
        meta={"minutes_offline": 20},
    )

    # Condition cleared
    engine.auto_resolve_alert("device_offline", tenant_id=tenant_id, device_id=device_id)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from fleetwatch.alerting.dispatcher import NotificationDispatcher
from fleetwatch.alerting.errors import (
    AlertValidationError,
    DuplicateOpenAlertError,
    StoreError,
)
from fleetwatch.alerting.escalation import EscalationRules, escalate, rules_from_config
from fleetwatch.alerting.metrics import MetricsRecorder, MetricsSnapshot
from fleetwatch.alerting.models import (
    ACTIVE_STATUSES,
    Alert,
    AlertPage,
    AlertQuery,
    AlertSeverity,
    AlertStatus,
    AlertSummary,
    AlertType,
    DedupKey,
    DispatchResult,
    Pagination,
    RaiseAlertResult,
    max_severity,
    utcnow,
)
from fleetwatch.alerting.rate_limiter import RateLimiter, rate_limit_key
from fleetwatch.alerting.store import AlertStore
from fleetwatch.shared.config import RateLimitConfig, Settings, get_config

logger = logging.getLogger(__name__)

OPEN_ONLY = frozenset({AlertStatus.OPEN})


def _log_context(**fields: Any) -> dict[str, Any]:
    """Structured log context with empty entries dropped."""
    return {key: value for key, value in fields.items() if value is not None}


class AlertEngine:
    """
    Orchestrates the alert lifecycle against an ``AlertStore``.

    Every public method is safe to call from multiple threads. The only
    in-process shared state is the rate limiter and the metrics recorder,
    both internally locked; everything else lives in the store.
    """

    # Attempts at find -> coalesce/insert before giving up under contention
    MAX_WRITE_ATTEMPTS = 5

    def __init__(
        self,
        store: AlertStore,
        config: Settings | None = None,
        dispatcher: NotificationDispatcher | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: MetricsRecorder | None = None,
        escalation_rules: EscalationRules | None = None,
        tenant_resolver: Callable[[], str | None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize alert engine.

        Args:
            store: Persistence collaborator
            config: Configuration object (uses default if not provided)
            dispatcher: Notification dispatcher (built from ``store`` if not provided)
            rate_limiter: Rate limiter (built from config if not provided)
            metrics: Metrics recorder (built from config if not provided)
            escalation_rules: Rule table (loaded from config if not provided)
            tenant_resolver: Fallback tenant lookup when a call omits ``tenant_id``
            clock: Current UTC time, injectable for tests
        """
        self.config = config or get_config()
        self.store = store
        self.dispatcher = dispatcher or NotificationDispatcher(store, self.config, clock)
        self.rate_limiter = rate_limiter or RateLimiter(self.config)
        self.metrics = metrics or MetricsRecorder(self.config)
        self.escalation_rules = (
            escalation_rules if escalation_rules is not None else rules_from_config(self.config)
        )
        self._tenant_resolver = tenant_resolver
        self._clock = clock

    def __enter__(self) -> AlertEngine:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.shutdown()
        return False

    def shutdown(self) -> None:
        """Stop background work owned by the engine."""
        self.rate_limiter.shutdown()

    # =========================================================================
    # Raise
    # =========================================================================

    def raise_alert(
        self,
        alert_type: str,
        severity: str,
        title: str,
        message: str | None = None,
        tenant_id: str | None = None,
        device_id: str | None = None,
        scene_id: str | None = None,
        schedule_id: str | None = None,
        data_source_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> RaiseAlertResult:
        """
        Raise a new alert or coalesce into the matching open one.

        Args:
            alert_type: Alert type (see ``AlertType``)
            severity: Requested severity (see ``AlertSeverity``)
            title: Alert title
            message: Detailed message
            tenant_id: Tenant (falls back to the tenant resolver, then config)
            device_id: Related device
            scene_id: Related scene
            schedule_id: Related schedule
            data_source_id: Related data source
            meta: Additional metadata, shallow-merged into an existing alert

        Returns:
            RaiseAlertResult with the alert id (None when dropped), whether a
            new row was created, and whether the rate limiter dropped it

        Raises:
            StoreError: The store failed during lookup, insert or update
        """
        log_context = _log_context(
            tenant_id=tenant_id,
            alert_type=alert_type,
            severity=severity,
            device_id=device_id,
            scene_id=scene_id,
            schedule_id=schedule_id,
            data_source_id=data_source_id,
        )

        with self.metrics.timer("raise_alert", log_context):
            try:
                effective_tenant, parsed_type, requested = self._validate(
                    alert_type, severity, tenant_id
                )
                log_context["tenant_id"] = effective_tenant
                key = DedupKey(
                    tenant_id=effective_tenant,
                    type=parsed_type,
                    device_id=device_id,
                    scene_id=scene_id,
                    schedule_id=schedule_id,
                    data_source_id=data_source_id,
                )
            except AlertValidationError as e:
                logger.warning(f"Dropping alert: {e}", extra=log_context)
                self.metrics.increment("alerts_dropped_validation")
                return RaiseAlertResult(alert_id=None, is_new=False, error=str(e))

            try:
                return self._raise(key, requested, title, message, dict(meta or {}), log_context)
            except StoreError as e:
                logger.error(f"Error raising alert: {e}", extra=log_context, exc_info=True)
                raise

    def _validate(
        self,
        alert_type: str,
        severity: str,
        tenant_id: str | None,
    ) -> tuple[str, AlertType, AlertSeverity]:
        try:
            parsed_type = AlertType(alert_type)
        except ValueError:
            raise AlertValidationError(f'invalid type "{alert_type}"') from None
        try:
            parsed_severity = AlertSeverity(severity)
        except ValueError:
            raise AlertValidationError(f'invalid severity "{severity}"') from None

        effective_tenant = self._resolve_tenant(tenant_id)
        if not effective_tenant:
            raise AlertValidationError("no tenant ID available")

        return effective_tenant, parsed_type, parsed_severity

    def _resolve_tenant(self, tenant_id: str | None) -> str | None:
        if tenant_id:
            return tenant_id
        if self._tenant_resolver is not None:
            resolved = self._tenant_resolver()
            if resolved:
                return resolved
        return self.config.alerting.default_tenant_id

    def _raise(
        self,
        key: DedupKey,
        severity: AlertSeverity,
        title: str,
        message: str | None,
        meta: dict[str, Any],
        log_context: dict[str, Any],
    ) -> RaiseAlertResult:
        limiter_args = (key.type, key.device_id, key.data_source_id, key.tenant_id)
        rate_limit = self.rate_limiter.check(*limiter_args)
        if rate_limit.limited:
            logger.debug(
                f"Alert rate limited ({rate_limit.reset_in_ms}ms until reset)",
                extra={**log_context, "reset_in_ms": rate_limit.reset_in_ms},
            )

        admitted = False
        for _ in range(self.MAX_WRITE_ATTEMPTS):
            # Lookup happens before the rate limit verdict is applied, so an
            # already-open alert still coalesces while the source is throttled.
            existing = self.store.find_open_alert(key)
            if existing is not None:
                updated = self._try_coalesce(existing, severity, message, meta, log_context)
                if updated is None:
                    continue
                self._dispatch_safely(
                    lambda: self.dispatcher.dispatch_alert_notifications(updated, False),
                    log_context,
                )
                self.metrics.increment("alerts_coalesced")
                return RaiseAlertResult(alert_id=updated.id, is_new=False)

            if not admitted:
                # Concurrent raises may all have passed the early check, so
                # admission is re-evaluated atomically before inserting.
                admitted = not rate_limit.limited and self.rate_limiter.try_admit(*limiter_args)
                if not admitted:
                    logger.warning(
                        "Dropping new alert due to rate limit",
                        extra={
                            **log_context,
                            "rate_limit_key": rate_limit_key(*limiter_args),
                            "reset_in_ms": rate_limit.reset_in_ms,
                        },
                    )
                    self.metrics.increment("alerts_dropped_rate_limit")
                    return RaiseAlertResult(alert_id=None, is_new=False, rate_limited=True)

            now = self._clock()
            try:
                created = self.store.insert_alert(
                    Alert(
                        tenant_id=key.tenant_id,
                        type=key.type,
                        severity=severity,
                        title=title,
                        message=message,
                        device_id=key.device_id,
                        scene_id=key.scene_id,
                        schedule_id=key.schedule_id,
                        data_source_id=key.data_source_id,
                        meta=meta,
                        created_at=now,
                        last_occurred_at=now,
                        updated_at=now,
                    )
                )
            except DuplicateOpenAlertError:
                logger.info("Concurrent raise created the alert first, coalescing", extra=log_context)
                continue

            log_context.update(alert_id=created.id, is_new=True, occurrences=1)
            logger.info(f"New alert created: {title}", extra=log_context)
            self._dispatch_safely(
                lambda: self.dispatcher.dispatch_alert_notifications(created, True),
                log_context,
            )
            self.metrics.increment("alerts_raised")
            return RaiseAlertResult(alert_id=created.id, is_new=True)

        raise StoreError(
            f"Could not settle alert {key.type} after {self.MAX_WRITE_ATTEMPTS} attempts"
        )

    def _try_coalesce(
        self,
        current: Alert,
        severity: AlertSeverity,
        message: str | None,
        meta: dict[str, Any],
        log_context: dict[str, Any],
    ) -> Alert | None:
        """
        Fold a repeat occurrence into ``current``.

        The update is conditional on the alert still being open with the
        occurrence count we read, so concurrent coalescers never lose an
        increment. Returns None when that condition no longer holds.
        """
        merged_meta = {**current.meta, **meta}
        occurrences = current.occurrences + 1
        now = self._clock()

        escalated = escalate(
            current.type,
            current.severity,
            merged_meta,
            occurrences,
            current.created_at,
            rules=self.escalation_rules,
            now=now,
        )
        final_severity = max_severity(current.severity, severity, escalated)

        fields: dict[str, Any] = {
            "occurrences": occurrences,
            "last_occurred_at": now,
            "severity": final_severity,
            "meta": merged_meta,
        }
        if message:
            fields["message"] = message

        updated = self.store.bulk_update_alerts(
            AlertQuery(ids=[current.id], statuses=OPEN_ONLY, occurrences=current.occurrences),
            fields,
        )
        if not updated:
            logger.debug("Coalesce lost a race, retrying", extra={"alert_id": current.id})
            return None

        alert = updated[0]
        log_context.update(alert_id=alert.id, is_new=False, occurrences=alert.occurrences)
        logger.info("Alert coalesced (deduplicated)", extra=log_context)

        if final_severity != current.severity:
            log_context["severity"] = final_severity
            logger.info(
                f"Alert auto-escalated: {current.severity} -> {final_severity}",
                extra={
                    **log_context,
                    "escalation_reason": (
                        "auto-escalation-rule"
                        if escalated == final_severity
                        else "requested-severity"
                    ),
                },
            )
        return alert

    def _dispatch_safely(
        self, dispatch: Callable[[], DispatchResult], log_context: dict[str, Any]
    ) -> DispatchResult:
        """
        Fire-and-forget notification dispatch.

        Any error is logged, counted and returned in the result; it never
        reaches the caller of the alert operation.
        """
        try:
            result = dispatch()
        except Exception as e:
            logger.warning(
                f"Notification dispatch failed (non-fatal): {e}",
                extra=log_context,
                exc_info=True,
            )
            self.metrics.increment("notifications_failed")
            return DispatchResult(error=str(e))

        self.metrics.increment("notifications_sent", result.in_app_count + result.email_count)
        if result.failed_count:
            self.metrics.increment("notifications_failed", result.failed_count)
        return result

    # =========================================================================
    # Acknowledge / Resolve
    # =========================================================================

    def acknowledge_alert(self, alert_id: str, actor_id: str | None = None) -> bool:
        """
        Mark an open alert as seen.

        Returns:
            True if the alert was open and is now acknowledged
        """
        return self.bulk_acknowledge([alert_id], actor_id) == 1

    def resolve_alert(
        self, alert_id: str, notes: str | None = None, actor_id: str | None = None
    ) -> bool:
        """
        Mark an open or acknowledged alert as fixed.

        Returns:
            True if the alert transitioned to resolved
        """
        return self.bulk_resolve([alert_id], notes, actor_id) == 1

    def bulk_acknowledge(self, alert_ids: Iterable[str], actor_id: str | None = None) -> int:
        """Acknowledge every listed alert that is currently open."""
        ids = list(alert_ids)
        if not ids:
            return 0

        updated = self.store.bulk_update_alerts(
            AlertQuery(ids=ids, statuses=OPEN_ONLY),
            {
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_by": actor_id,
                "acknowledged_at": self._clock(),
            },
        )
        if updated:
            logger.info(
                f"Acknowledged {len(updated)} alert(s)",
                extra=_log_context(alert_ids=[a.id for a in updated], actor_id=actor_id),
            )
        return len(updated)

    def bulk_resolve(
        self,
        alert_ids: Iterable[str],
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> int:
        """Resolve every listed alert that is open or acknowledged."""
        ids = list(alert_ids)
        if not ids:
            return 0

        updated = self.store.bulk_update_alerts(
            AlertQuery(ids=ids, statuses=ACTIVE_STATUSES),
            {
                "status": AlertStatus.RESOLVED,
                "resolved_by": actor_id,
                "resolved_at": self._clock(),
                "resolution_notes": notes,
            },
        )
        if updated:
            self.metrics.increment("alerts_resolved", len(updated))
            logger.info(
                f"Resolved {len(updated)} alert(s)",
                extra=_log_context(alert_ids=[a.id for a in updated], actor_id=actor_id),
            )
        return len(updated)

    def auto_resolve_alert(
        self,
        alert_type: str,
        tenant_id: str | None = None,
        device_id: str | None = None,
        scene_id: str | None = None,
        schedule_id: str | None = None,
        data_source_id: str | None = None,
        notes: str | None = None,
    ) -> int:
        """
        Resolve every active alert matching the condition that just cleared.

        Unspecified correlation keys are wildcards: clearing a device's
        ``device_offline`` condition resolves it regardless of scene/schedule.

        Returns:
            Number of alerts resolved
        """
        notes = notes or self.config.alerting.notifications.resolved_notes
        log_context = _log_context(
            tenant_id=tenant_id,
            alert_type=alert_type,
            device_id=device_id,
            scene_id=scene_id,
            schedule_id=schedule_id,
            data_source_id=data_source_id,
            is_resolved=True,
        )

        with self.metrics.timer("auto_resolve_alert", log_context):
            try:
                parsed_type = AlertType(alert_type)
            except ValueError:
                logger.warning(f'Auto-resolve skipped: invalid type "{alert_type}"', extra=log_context)
                return 0

            effective_tenant = self._resolve_tenant(tenant_id)
            if not effective_tenant:
                logger.debug("Auto-resolve skipped: no tenant ID", extra=log_context)
                return 0
            log_context["tenant_id"] = effective_tenant

            try:
                resolved = self.store.bulk_update_alerts(
                    AlertQuery(
                        tenant_id=effective_tenant,
                        type=parsed_type,
                        statuses=ACTIVE_STATUSES,
                        device_id=device_id,
                        scene_id=scene_id,
                        schedule_id=schedule_id,
                        data_source_id=data_source_id,
                    ),
                    {
                        "status": AlertStatus.RESOLVED,
                        "resolved_at": self._clock(),
                        "resolution_notes": notes,
                    },
                )
            except StoreError as e:
                logger.error(f"Error auto-resolving alerts: {e}", extra=log_context, exc_info=True)
                raise

            if not resolved:
                return 0

            self.metrics.increment("alerts_resolved", len(resolved))
            logger.info(
                f"Auto-resolved {len(resolved)} alert(s)",
                extra={
                    **log_context,
                    "resolved_count": len(resolved),
                    "alert_ids": [a.id for a in resolved],
                },
            )

            for alert in resolved:
                self._dispatch_safely(
                    lambda alert=alert: self.dispatcher.dispatch_resolved_notification(
                        alert, notes
                    ),
                    {**log_context, "alert_id": alert.id},
                )
            return len(resolved)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_alerts(
        self, filters: AlertQuery | None = None, pagination: Pagination | None = None
    ) -> AlertPage:
        """Page of alerts, most recently occurring first."""
        items, total = self.store.list_alerts(filters or AlertQuery(), pagination or Pagination())
        return AlertPage(items=items, total=total)

    def get_alert(self, alert_id: str) -> Alert | None:
        return self.store.get_alert_by_id(alert_id)

    def get_alert_summary(self, tenant_id: str | None = None) -> AlertSummary:
        """Open alerts by severity, and the acknowledged count, for one tenant."""
        tenant = self._resolve_tenant(tenant_id)

        def count(status: AlertStatus, severity: AlertSeverity | None = None) -> int:
            _, total = self.store.list_alerts(
                AlertQuery(tenant_id=tenant, statuses=frozenset({status}), severity=severity),
                Pagination(limit=0),
            )
            return total

        summary = AlertSummary(
            critical=count(AlertStatus.OPEN, AlertSeverity.CRITICAL),
            warning=count(AlertStatus.OPEN, AlertSeverity.WARNING),
            info=count(AlertStatus.OPEN, AlertSeverity.INFO),
            acknowledged=count(AlertStatus.ACKNOWLEDGED),
        )
        summary.open = summary.critical + summary.warning + summary.info
        return summary

    # =========================================================================
    # Operational controls
    # =========================================================================

    def configure_rate_limit(
        self,
        max_per_window: int | None = None,
        window_ms: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        """Adjust rate limits at runtime. Unspecified values are kept."""
        self.rate_limiter.configure(max_per_window, window_ms, enabled)

    def get_rate_limit_config(self) -> RateLimitConfig:
        return self.rate_limiter.get_config()

    def set_slow_operation_threshold(self, threshold_ms: float) -> None:
        self.metrics.set_slow_operation_threshold(threshold_ms)

    def get_performance_metrics(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    def reset_performance_metrics(self) -> None:
        self.metrics.reset()
