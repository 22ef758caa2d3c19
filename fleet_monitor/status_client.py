from __future__ import annotations

from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from fleet_monitor.config import MonitorConfig
from fleet_monitor.models import FleetStatusSnapshot


class FleetStatusError(RuntimeError):
    """The fleet status snapshot could not be fetched or decoded."""


@dataclass(frozen=True)
class StatusClientConfig:
    base_url: str
    token: str
    timeout_seconds: float = 10.0

    @classmethod
    def from_monitor_config(cls, config: MonitorConfig) -> "StatusClientConfig":
        return cls(
            base_url=config.api_base,
            token=config.api_key,
            timeout_seconds=config.fetch_timeout_seconds,
        )


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def fleet_status_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/v1/fleet/status"


async def fetch_fleet_status(client: httpx.AsyncClient, cfg: StatusClientConfig) -> FleetStatusSnapshot:
    """
    Read one fleet status snapshot. Any transport, HTTP or schema problem is
    raised as FleetStatusError so the caller can abort the sweep.
    """
    url = fleet_status_url(cfg.base_url)
    try:
        resp = await client.get(url, headers=auth_headers(cfg.token), timeout=cfg.timeout_seconds)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as exc:
        raise FleetStatusError(f"Fleet status request failed with HTTP {exc.response.status_code}") from exc
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise FleetStatusError(f"Fleet status request failed: {type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        raise FleetStatusError("Fleet status response is not valid JSON") from exc

    if not isinstance(data, dict):
        raise FleetStatusError("Unexpected fleet status response (not a JSON object)")
    try:
        return FleetStatusSnapshot.model_validate(data)
    except ValidationError as exc:
        raise FleetStatusError(f"Fleet status response failed validation: {exc.error_count()} error(s)") from exc
