"""Best-effort delivery of monitor events to agent sessions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import httpx
import structlog

from fleet_monitor.config import MonitorConfig
from fleet_monitor.models import MonitorEvent, TargetAgent
from fleet_monitor.status_client import auth_headers

logger = structlog.get_logger(__name__)

DELIVERED = "delivered"
NO_ADDRESS = "no_address"
FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt. Callers are free to ignore it."""

    event_id: str
    target: TargetAgent
    status: str
    session_id: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DELIVERED


def session_routes_from_config(config: MonitorConfig) -> Dict[TargetAgent, Optional[str]]:
    # Forge is spawned on demand and never has a standing session.
    return {
        TargetAgent.GUARDIAN: config.guardian_session_id,
        TargetAgent.LEDGER: config.ledger_session_id,
        TargetAgent.COMMANDER: config.commander_session_id,
        TargetAgent.FORGE: None,
    }


class EventDispatcher:
    """Resolves event targets to sessions and posts events fire-and-forget."""

    def __init__(
        self,
        base_url: str,
        token: str,
        routes: Mapping[TargetAgent, Optional[str]],
        timeout_seconds: float = 5.0,
    ):
        """Initialize the dispatcher.

        Args:
            base_url: Fleet-management API base URL hosting the session endpoints
            token: Bearer token sent with each delivery
            routes: Static target -> session id lookup
            timeout_seconds: Timeout for a single delivery attempt
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.routes = dict(routes)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: MonitorConfig) -> "EventDispatcher":
        return cls(
            base_url=config.api_base,
            token=config.api_key,
            routes=session_routes_from_config(config),
            timeout_seconds=config.delivery_timeout_seconds,
        )

    def resolve_target(self, target: TargetAgent) -> Optional[str]:
        """Return the session id for a target, or None when it has no address."""
        session_id = self.routes.get(target)
        return session_id or None

    def session_event_url(self, session_id: str) -> str:
        return f"{self.base_url}/_internal/sessions/{session_id}/event"

    async def dispatch(self, client: httpx.AsyncClient, event: MonitorEvent) -> DeliveryResult:
        """Deliver one event. Never raises for delivery problems."""
        logger.info(
            "Emitting event",
            event_type=event.type.value,
            target=event.target_agent.value,
            priority=event.priority.value,
            event_id=event.event_id,
        )

        session_id = self.resolve_target(event.target_agent)
        if session_id is None:
            logger.warning(
                "No session for target, dropping event",
                target=event.target_agent.value,
                event_type=event.type.value,
            )
            return DeliveryResult(event_id=event.event_id, target=event.target_agent, status=NO_ADDRESS)

        try:
            resp = await client.post(
                self.session_event_url(session_id),
                headers=auth_headers(self.token),
                json=event.to_wire(),
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Event delivery rejected",
                target=event.target_agent.value,
                event_id=event.event_id,
                status_code=e.response.status_code,
            )
            return DeliveryResult(
                event_id=event.event_id,
                target=event.target_agent,
                status=FAILED,
                session_id=session_id,
                status_code=e.response.status_code,
                error=f"HTTP {e.response.status_code}",
            )
        except Exception as e:
            # Transport errors, and request-building errors such as httpx.InvalidURL
            msg = f"{type(e).__name__}: {e}"
            logger.warning(
                "Event delivery failed",
                target=event.target_agent.value,
                event_id=event.event_id,
                error=msg,
            )
            return DeliveryResult(
                event_id=event.event_id,
                target=event.target_agent,
                status=FAILED,
                session_id=session_id,
                error=msg,
            )

        return DeliveryResult(
            event_id=event.event_id,
            target=event.target_agent,
            status=DELIVERED,
            session_id=session_id,
            status_code=resp.status_code,
        )

    async def dispatch_all(self, client: httpx.AsyncClient, events: List[MonitorEvent]) -> List[DeliveryResult]:
        results = []
        for event in events:
            results.append(await self.dispatch(client, event))
        return results
