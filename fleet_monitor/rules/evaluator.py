"""Threshold rules evaluated against each fleet status snapshot."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog

from fleet_monitor.config import MonitorThresholds
from fleet_monitor.models import (
    AlertSeverity,
    EventType,
    FleetStatusSnapshot,
    MonitorEvent,
    Priority,
    TargetAgent,
    utcnow,
)
from fleet_monitor.rules.suppression import FLEET_DEGRADED_KEY, SuppressionLedger


logger = structlog.get_logger(__name__)

PROVIDER_SUPPRESSION_WINDOW = timedelta(hours=1)

# Priority escalation points
DEGRADED_HIGH_PRIORITY_COUNT = 10
COST_HIGH_PRIORITY_PCT = 25
QUEUE_HIGH_PRIORITY_DEPTH = 50
PROVIDER_CRITICAL_SCORE = 50


Clock = Callable[[], datetime]


class RuleEvaluator:
    """Runs the fixed rule set and owns the suppression ledger.

    Every rule is isolated: an exception in one rule is logged and the
    remaining rules still run.
    """

    def __init__(
        self,
        thresholds: Optional[MonitorThresholds] = None,
        ledger: Optional[SuppressionLedger] = None,
        clock: Clock = utcnow,
    ):
        self.thresholds = thresholds or MonitorThresholds()
        self.ledger = ledger or SuppressionLedger()
        self._clock = clock

    @property
    def degraded_suppression_window(self) -> timedelta:
        return timedelta(minutes=self.thresholds.degraded_suppression_mins)

    def evaluate(
        self,
        fleet: FleetStatusSnapshot,
        previous: Optional[FleetStatusSnapshot] = None,
    ) -> List[MonitorEvent]:
        """Run every rule in order and collect the produced events."""
        rules = [
            ("instance_health", lambda: self.check_instance_health(fleet)),
            ("cost_anomaly", lambda: self.check_cost_anomaly(fleet)),
            ("provision_queue", lambda: self.check_provision_queue(fleet)),
            ("provider_health", lambda: self.check_provider_health(fleet)),
            ("fleet_recovery", lambda: self.check_fleet_recovery(fleet, previous)),
        ]

        events: List[MonitorEvent] = []
        for name, rule in rules:
            try:
                produced = rule()
            except Exception:
                logger.exception("Rule evaluation failed", rule=name)
                continue
            if produced is None:
                continue
            if isinstance(produced, MonitorEvent):
                produced = [produced]
            events.extend(produced)
        return events

    def suppressed_count(self) -> int:
        return self.ledger.suppressed_count(self._clock())

    # --- Rules ---------------------------------------------------------------

    def check_instance_health(self, fleet: FleetStatusSnapshot) -> List[MonitorEvent]:
        events: List[MonitorEvent] = []
        now = self._clock()
        store = self.ledger.instances

        if fleet.degraded_instances > 0:
            if not store.is_suppressed(FLEET_DEGRADED_KEY, now):
                window = self.degraded_suppression_window
                payload = {
                    "degradedCount": fleet.degraded_instances,
                    "failedCount": fleet.failed_instances,
                    "byProvider": {
                        name: summary.model_dump(mode="json", by_alias=True, exclude_none=True)
                        for name, summary in fleet.by_provider.items()
                    },
                    "message": (
                        f"{fleet.degraded_instances} degraded, "
                        f"{fleet.failed_instances} failed instances detected"
                    ),
                }
                if fleet.instances is not None:
                    payload["degradedInstanceIds"] = [
                        inst.instance_id
                        for inst in fleet.instances
                        if inst.health_score < self.thresholds.instance_degraded_score
                    ]
                events.append(
                    MonitorEvent(
                        type=EventType.INSTANCE_DEGRADED,
                        priority=(
                            Priority.HIGH
                            if fleet.degraded_instances > DEGRADED_HIGH_PRIORITY_COUNT
                            else Priority.MEDIUM
                        ),
                        timestamp=now,
                        target_agent=TargetAgent.GUARDIAN,
                        payload=payload,
                        suppress_until=now + window,
                    )
                )
                # Only record the expiry once the event exists
                store.suppress(FLEET_DEGRADED_KEY, now, window)
            else:
                logger.debug(
                    "Degraded instance alert suppressed",
                    degraded=fleet.degraded_instances,
                    until=store.expiry(FLEET_DEGRADED_KEY).isoformat(),
                )
        elif store.clear(FLEET_DEGRADED_KEY):
            logger.debug("Cleared degraded instance suppression")

        # Failed pairs are safety-critical and bypass the ledger entirely
        if fleet.failed_instances > 0:
            critical_alerts = [
                alert.model_dump(mode="json", by_alias=True, exclude_none=True)
                for alert in fleet.alerts
                if alert.severity == AlertSeverity.CRITICAL
            ]
            events.append(
                MonitorEvent(
                    type=EventType.PAIR_FAILED,
                    priority=Priority.CRITICAL,
                    timestamp=now,
                    target_agent=TargetAgent.GUARDIAN,
                    payload={
                        "failedCount": fleet.failed_instances,
                        "alerts": critical_alerts,
                        "message": f"CRITICAL: {fleet.failed_instances} gateway pairs in FAILED state",
                    },
                )
            )

        return events

    def check_cost_anomaly(self, fleet: FleetStatusSnapshot) -> Optional[MonitorEvent]:
        cost = fleet.cost
        deviation = cost.deviation_pct
        magnitude = abs(deviation)

        if magnitude < self.thresholds.cost_anomaly_pct:
            return None

        sign = "+" if deviation > 0 else ""
        return MonitorEvent(
            type=EventType.COST_ANOMALY,
            priority=Priority.HIGH if magnitude > COST_HIGH_PRIORITY_PCT else Priority.MEDIUM,
            timestamp=self._clock(),
            target_agent=TargetAgent.LEDGER,
            payload={
                "actualUsd": cost.monthly_actual_usd,
                "projectedUsd": cost.monthly_projected_usd,
                "deviationPct": deviation,
                "direction": "over" if deviation > 0 else "under",
                "message": (
                    f"Cost anomaly: {sign}{deviation:.1f}% vs projection "
                    f"(${cost.monthly_actual_usd:.0f} actual vs ${cost.monthly_projected_usd:.0f} projected)"
                ),
            },
        )

    def check_provision_queue(self, fleet: FleetStatusSnapshot) -> Optional[MonitorEvent]:
        queue_depth = fleet.bootstrapping_instances

        if queue_depth < self.thresholds.provision_queue_depth:
            return None

        return MonitorEvent(
            type=EventType.PROVISION_QUEUE_BACKLOG,
            priority=Priority.HIGH if queue_depth > QUEUE_HIGH_PRIORITY_DEPTH else Priority.MEDIUM,
            timestamp=self._clock(),
            target_agent=TargetAgent.FORGE,
            payload={
                "queueDepth": queue_depth,
                "bootstrappingInstances": fleet.bootstrapping_instances,
                "message": f"Provision queue backlog: {queue_depth} instances in BOOTSTRAPPING state",
            },
        )

    def check_provider_health(self, fleet: FleetStatusSnapshot) -> List[MonitorEvent]:
        events: List[MonitorEvent] = []
        now = self._clock()
        store = self.ledger.providers

        for provider, summary in fleet.by_provider.items():
            if summary.health_score >= self.thresholds.provider_degraded_score:
                if store.clear(provider):
                    logger.info("Provider recovered, suppression cleared", provider=provider)
                continue

            if store.is_suppressed(provider, now):
                continue

            events.append(
                MonitorEvent(
                    type=EventType.PROVIDER_DEGRADED,
                    priority=(
                        Priority.CRITICAL
                        if summary.health_score < PROVIDER_CRITICAL_SCORE
                        else Priority.HIGH
                    ),
                    timestamp=now,
                    target_agent=TargetAgent.COMMANDER,
                    payload={
                        "provider": provider,
                        "healthScore": summary.health_score,
                        "activeInstances": summary.active,
                        "degradedInstances": summary.degraded,
                        "message": (
                            f"Provider {provider} health score: {summary.health_score:g}/100 "
                            "- consider pausing new provisions"
                        ),
                    },
                    suppress_until=now + PROVIDER_SUPPRESSION_WINDOW,
                )
            )
            store.suppress(provider, now, PROVIDER_SUPPRESSION_WINDOW)

        return events

    def check_fleet_recovery(
        self,
        fleet: FleetStatusSnapshot,
        previous: Optional[FleetStatusSnapshot],
    ) -> Optional[MonitorEvent]:
        if previous is None:
            return None
        if not previous.has_problems() or fleet.has_problems():
            return None

        return MonitorEvent(
            type=EventType.FLEET_RECOVERING,
            priority=Priority.LOW,
            timestamp=self._clock(),
            target_agent=TargetAgent.COMMANDER,
            payload={
                "previousFailed": previous.failed_instances,
                "previousDegraded": previous.degraded_instances,
                "message": "Fleet recovered - all instances now healthy",
            },
        )
