"""Background fleet health monitor.

Polls the fleet status endpoint on a fixed interval, evaluates the rule set
and forwards the resulting events to the agent sessions that handle them:

    degraded instances       -> INSTANCE_DEGRADED       -> guardian
    failed pairs             -> PAIR_FAILED             -> guardian
    cost deviation           -> COST_ANOMALY            -> ledger
    provision queue depth    -> PROVISION_QUEUE_BACKLOG -> forge
    provider health score    -> PROVIDER_DEGRADED       -> commander
    fleet healthy again      -> FLEET_RECOVERING        -> commander
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx
import structlog

from ..config import MonitorConfig, MonitorThresholds
from ..models import FleetStatusSnapshot, MonitorEvent, utcnow
from ..notifications.event_dispatcher import DeliveryResult, EventDispatcher
from ..rules.evaluator import Clock, RuleEvaluator
from ..status_client import FleetStatusError, StatusClientConfig, fetch_fleet_status
from .job_scheduler import JobScheduler


logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "fleet_health_sweep"


@dataclass
class SweepResult:
    """What a single sweep did."""

    started_at: datetime
    events: List[MonitorEvent] = field(default_factory=list)
    deliveries: List[DeliveryResult] = field(default_factory=list)
    skipped: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def aborted(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "skipped": self.skipped,
            "aborted": self.aborted,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 1),
            "events": [event.to_wire() for event in self.events],
            "deliveries": [
                {
                    "event_id": d.event_id,
                    "target": d.target.value,
                    "status": d.status,
                    "status_code": d.status_code,
                    "error": d.error,
                }
                for d in self.deliveries
            ],
        }


class HealthMonitorService:
    """Runs fleet sweeps immediately on start and then once per interval."""

    def __init__(
        self,
        config: MonitorConfig,
        thresholds: Optional[Union[MonitorThresholds, Mapping[str, Any]]] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        scheduler: Optional[JobScheduler] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        if isinstance(thresholds, MonitorThresholds):
            self.thresholds = thresholds
        else:
            self.thresholds = MonitorThresholds(
                **{**config.thresholds.model_dump(), **dict(thresholds or {})}
            )

        self.status_config = StatusClientConfig.from_monitor_config(config)
        self.evaluator = RuleEvaluator(self.thresholds, clock=clock)
        self.dispatcher = dispatcher or EventDispatcher.from_config(config)
        self.scheduler = scheduler or JobScheduler()
        self._clock = clock

        self._client = client
        self._owns_client = client is None

        self.running = False
        self._current_sweep: Optional[asyncio.Future] = None
        self._last_known_state: Optional[FleetStatusSnapshot] = None
        self._last_sweep_at: Optional[datetime] = None

    # --- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Run one sweep now, then arm the interval job. No-op when already running."""
        if self.running:
            logger.warning("Health monitor already running")
            return

        self.running = True
        interval_seconds = self.config.poll_interval_seconds
        logger.info("Starting health monitor", poll_interval_seconds=interval_seconds)

        try:
            await self.run_sweep()
        except Exception:
            logger.exception("Initial sweep failed")

        if not self.running:
            return

        await self.scheduler.start()
        self.scheduler.add_interval_job(
            job_id=SWEEP_JOB_ID,
            func=self._on_tick,
            seconds=interval_seconds,
            description="Fleet health sweep",
        )

    async def stop(self) -> None:
        """Stop scheduling sweeps. A sweep already running is left to finish."""
        self.running = False
        if SWEEP_JOB_ID in self.scheduler.jobs:
            self.scheduler.remove_job(SWEEP_JOB_ID)
        await self.scheduler.stop()

        in_flight = self._current_sweep
        if in_flight is not None and not in_flight.done():
            await asyncio.gather(in_flight, return_exceptions=True)

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Health monitor stopped")

    async def _on_tick(self) -> None:
        if not self.running:
            return
        try:
            await self.run_sweep()
        except Exception:
            logger.exception("Sweep failed")

    # --- Sweep -----------------------------------------------------------------

    @property
    def sweep_in_progress(self) -> bool:
        return self._current_sweep is not None and not self._current_sweep.done()

    async def run_sweep(self) -> SweepResult:
        """Run one sweep unless another is still running.

        The sweep is shielded so cancelling the caller (e.g. scheduler
        shutdown) does not interrupt fetch/evaluate/dispatch mid-way.
        """
        if self.sweep_in_progress:
            logger.warning("Previous sweep still in progress, skipping")
            return SweepResult(started_at=self._clock(), skipped=True)

        self._current_sweep = asyncio.ensure_future(self._sweep())
        return await asyncio.shield(self._current_sweep)

    async def _sweep(self) -> SweepResult:
        result = SweepResult(started_at=self._clock())
        t0 = time.monotonic()
        logger.debug("Running fleet sweep")

        client = self._get_client()
        try:
            fleet = await fetch_fleet_status(client, self.status_config)
        except FleetStatusError as e:
            logger.error("Failed to fetch fleet status", error=str(e))
            result.error = str(e)
            result.duration_ms = (time.monotonic() - t0) * 1000
            return result

        result.events = self.evaluator.evaluate(fleet, self._last_known_state)
        result.deliveries = await self.dispatcher.dispatch_all(client, result.events)

        self._last_known_state = fleet
        self._last_sweep_at = result.started_at

        result.duration_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Sweep complete",
            events=len(result.events),
            delivered=sum(1 for d in result.deliveries if d.ok),
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    # --- Diagnostics -----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.running

    @property
    def last_state(self) -> Optional[FleetStatusSnapshot]:
        return self._last_known_state

    def get_suppressed_count(self) -> int:
        return self.evaluator.suppressed_count()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "sweep_in_progress": self.sweep_in_progress,
            "poll_interval_seconds": self.config.poll_interval_seconds,
            "suppressed_count": self.get_suppressed_count(),
            "last_sweep_at": self._last_sweep_at.isoformat() if self._last_sweep_at else None,
            "last_snapshot_id": self._last_known_state.snapshot_id if self._last_known_state else None,
            "scheduler": self.scheduler.get_scheduler_status(),
            "sweep_job": self.scheduler.get_job_status(SWEEP_JOB_ID),
        }
