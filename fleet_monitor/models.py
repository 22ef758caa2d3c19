"""Data models for fleet status snapshots and monitor events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Frozen model that reads and writes the API's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# --- Inbound: fleet status snapshot ---------------------------------------


class _SnapshotModel(_CamelModel):
    """Inbound record. Fields the API adds beyond the modelled ones are kept as sent."""

    model_config = ConfigDict(extra="allow")


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class FleetAlert(_SnapshotModel):
    severity: AlertSeverity
    message: str
    instance_id: Optional[str] = None


class CostSummary(_SnapshotModel):
    monthly_actual_usd: float = 0.0
    monthly_projected_usd: float = 0.0
    deviation_pct: float = 0.0
    weekly_actual_usd: Optional[float] = None
    per_active_account_usd: Optional[float] = None


class ProviderHealthSummary(_SnapshotModel):
    health_score: float
    active: int = 0
    degraded: int = 0
    total: Optional[int] = None
    failed: Optional[int] = None
    avg_provision_time_secs: Optional[float] = None
    monthly_cost_usd: Optional[float] = None


class TierSummary(_SnapshotModel):
    count: int = 0
    monthly_cost_usd: Optional[float] = None
    avg_cpu_usage_pct: Optional[float] = None
    avg_mem_usage_pct: Optional[float] = None


class InstanceRecord(_SnapshotModel):
    """Per-instance detail, only present when the endpoint runs in full-detail mode."""

    instance_id: str
    provider: Optional[str] = None
    status: Optional[str] = None
    health_score: float = 100.0
    account_id: Optional[str] = None
    region: Optional[str] = None
    tier: Optional[str] = None
    role: Optional[str] = None
    pair_instance_id: Optional[str] = None
    last_heartbeat: Optional[datetime] = None
    ip_tailscale: Optional[str] = None
    provisioned_at: Optional[datetime] = None
    monthly_cost_usd: Optional[float] = None


class FleetStatusSnapshot(_SnapshotModel):
    """A single consistent read of aggregate fleet state."""

    total_instances: int
    degraded_instances: int
    failed_instances: int
    bootstrapping_instances: int = 0
    active_pairs: Optional[int] = None
    unpaired: Optional[int] = None
    snapshot_id: Optional[str] = None
    captured_at: Optional[datetime] = None
    cost: CostSummary = Field(default_factory=CostSummary)
    by_provider: Dict[str, ProviderHealthSummary] = Field(default_factory=dict)
    by_tier: Dict[str, TierSummary] = Field(default_factory=dict)
    alerts: List[FleetAlert] = Field(default_factory=list)
    instances: Optional[List[InstanceRecord]] = None

    def has_problems(self) -> bool:
        return self.failed_instances > 0 or self.degraded_instances > 0

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Outbound: monitor events ---------------------------------------------


class EventType(str, Enum):
    INSTANCE_DEGRADED = "INSTANCE_DEGRADED"
    INSTANCE_FAILED = "INSTANCE_FAILED"
    PAIR_FAILED = "PAIR_FAILED"
    COST_ANOMALY = "COST_ANOMALY"
    PROVISION_QUEUE_BACKLOG = "PROVISION_QUEUE_BACKLOG"
    PROVIDER_DEGRADED = "PROVIDER_DEGRADED"
    FLEET_RECOVERING = "FLEET_RECOVERING"
    FLEET_HEALTHY = "FLEET_HEALTHY"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TargetAgent(str, Enum):
    GUARDIAN = "guardian"
    LEDGER = "ledger"
    FORGE = "forge"
    COMMANDER = "commander"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return f"evt-{uuid.uuid4().hex}"


class MonitorEvent(_CamelModel):
    """A typed notification addressed to one downstream consumer."""

    type: EventType
    priority: Priority
    target_agent: TargetAgent
    payload: Dict[str, Any] = Field(default_factory=dict)
    event_id: str = Field(default_factory=new_event_id)
    timestamp: datetime = Field(default_factory=utcnow)
    suppress_until: Optional[datetime] = None

    @property
    def message(self) -> str:
        return str(self.payload.get("message") or "")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the camelCase JSON body sent to consumer sessions."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
