"""Configuration management for the fleet health monitor."""

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CONFIG_PATH = "config/fleet_monitor.yaml"


class MonitorThresholds(BaseModel):
    """Threshold knobs evaluated by the rule checks."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    instance_degraded_score: float = Field(
        default=50, description="Instance health score below which an instance counts as degraded"
    )
    cost_anomaly_pct: float = Field(
        default=15, description="Absolute cost deviation % at or above which COST_ANOMALY is emitted"
    )
    provision_queue_depth: int = Field(
        default=20, description="Bootstrapping count at or above which PROVISION_QUEUE_BACKLOG is emitted"
    )
    provider_degraded_score: float = Field(
        default=75, description="Provider health score below which PROVIDER_DEGRADED is emitted"
    )
    degraded_suppression_mins: float = Field(
        default=30, ge=0, description="Minutes before INSTANCE_DEGRADED may be re-emitted"
    )


class MonitorConfig(BaseModel):
    """Main configuration for the fleet health monitor."""

    model_config = ConfigDict(frozen=True)

    # Fleet-management API
    api_base: str = Field(..., min_length=1, description="Fleet-management API base URL")
    api_key: str = Field(..., min_length=1, description="Service API key sent as a bearer token")

    # Scheduling
    health_poll_interval_ms: int = Field(default=300_000, gt=0, description="Sweep interval in milliseconds")

    # Timeouts
    fetch_timeout_seconds: float = Field(default=10.0, gt=0, description="Fleet status fetch timeout")
    delivery_timeout_seconds: float = Field(default=5.0, gt=0, description="Per-event delivery timeout")

    # Consumer sessions
    guardian_session_id: Optional[str] = Field(default=None, description="Guardian agent session")
    ledger_session_id: Optional[str] = Field(default=None, description="Ledger agent session")
    commander_session_id: Optional[str] = Field(default=None, description="Commander agent session")

    log_level: str = Field(default="INFO", description="Logging level")

    thresholds: MonitorThresholds = Field(default_factory=MonitorThresholds)

    @property
    def poll_interval_seconds(self) -> float:
        return self.health_poll_interval_ms / 1000


def load_config(config_path: Optional[str] = None, **overrides: Any) -> MonitorConfig:
    """Load configuration from file, then environment variables, then keyword overrides."""
    if config_path is None:
        config_path = os.getenv("FLEET_MONITOR_CONFIG", DEFAULT_CONFIG_PATH)

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = {
        "api_base": os.getenv("GF_API_BASE"),
        "api_key": os.getenv("GF_API_KEY"),
        "health_poll_interval_ms": os.getenv("HEALTH_POLL_INTERVAL_MS"),
        "guardian_session_id": os.getenv("GUARDIAN_SESSION_ID"),
        "ledger_session_id": os.getenv("LEDGER_SESSION_ID"),
        "commander_session_id": os.getenv("COMMANDER_SESSION_ID"),
        "log_level": os.getenv("LOG_LEVEL"),
    }

    for key, value in env_overrides.items():
        if value is not None and value != "":
            config_data[key] = value

    config_data.update(overrides)
    return MonitorConfig(**config_data)
