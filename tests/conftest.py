from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import pytest

from fleet_monitor.config import MonitorConfig
from fleet_monitor.models import FleetStatusSnapshot


def snapshot_data(**overrides: Any) -> dict[str, Any]:
    """A healthy fleet status body in the API's camelCase shape."""
    data: dict[str, Any] = {
        "snapshotId": "snap-1",
        "capturedAt": "2026-10-18T12:00:00Z",
        "totalInstances": 40,
        "activePairs": 20,
        "degradedInstances": 0,
        "failedInstances": 0,
        "bootstrappingInstances": 0,
        "unpaired": 0,
        "byProvider": {
            "hetzner": {"total": 24, "active": 24, "degraded": 0, "failed": 0, "healthScore": 98},
            "vultr": {"total": 16, "active": 16, "degraded": 0, "failed": 0, "healthScore": 91},
        },
        "cost": {"monthlyActualUsd": 1000.0, "monthlyProjectedUsd": 1000.0, "deviationPct": 0.0},
        "alerts": [],
    }
    data.update(overrides)
    return data


def make_snapshot(**overrides: Any) -> FleetStatusSnapshot:
    return FleetStatusSnapshot.model_validate(snapshot_data(**overrides))


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class _FakeFleetApiHandler(BaseHTTPRequestHandler):
    token = "test-key"

    # Mutated by tests through the FakeFleetApi wrapper.
    status_body: Any = None
    status_code = 200
    event_status_code = 200
    status_calls = 0
    delivered: list[tuple[str, dict]] = []

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _auth_ok(self) -> bool:
        return (self.headers.get("Authorization") or "") == f"Bearer {self.token}"

    def _send_json(self, status: int, obj: Any) -> None:
        body = json.dumps(obj, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802
        if not self._auth_ok():
            self.send_error(401)
            return
        if self.path != "/v1/fleet/status":
            self.send_error(404)
            return
        cls = type(self)
        cls.status_calls += 1
        if cls.status_code != 200:
            self.send_error(cls.status_code)
            return
        if isinstance(cls.status_body, str):
            body = cls.status_body.encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
            return
        self._send_json(200, cls.status_body)

    def do_POST(self) -> None:  # noqa: N802
        if not self._auth_ok():
            self.send_error(401)
            return
        parts = self.path.strip("/").split("/")
        if len(parts) != 4 or parts[0] != "_internal" or parts[1] != "sessions" or parts[3] != "event":
            self.send_error(404)
            return
        n = int(self.headers.get("Content-Length") or "0")
        raw = self.rfile.read(n) if n > 0 else b"{}"
        cls = type(self)
        cls.delivered.append((parts[2], json.loads(raw.decode("utf-8"))))
        if cls.event_status_code >= 300:
            self.send_error(cls.event_status_code)
            return
        self._send_json(cls.event_status_code, {"ok": True})


class FakeFleetApi:
    def __init__(self, base_url: str, handler: type[_FakeFleetApiHandler]) -> None:
        self.base_url = base_url
        self._handler = handler

    def set_status(self, body: Any = None, *, status_code: int = 200) -> None:
        self._handler.status_body = body
        self._handler.status_code = status_code

    def set_event_status(self, status_code: int) -> None:
        self._handler.event_status_code = status_code

    @property
    def status_calls(self) -> int:
        return self._handler.status_calls

    @property
    def delivered(self) -> list[tuple[str, dict]]:
        return self._handler.delivered


@pytest.fixture
def fake_fleet_api():
    handler = type("_Handler", (_FakeFleetApiHandler,), {"delivered": [], "status_body": snapshot_data()})
    httpd = HTTPServer(("127.0.0.1", 0), handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield FakeFleetApi(f"http://{host}:{port}", handler)
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture
def monitor_config(fake_fleet_api: FakeFleetApi) -> MonitorConfig:
    return MonitorConfig(
        api_base=fake_fleet_api.base_url,
        api_key="test-key",
        guardian_session_id="sess-guardian",
        ledger_session_id="sess-ledger",
        commander_session_id="sess-commander",
        fetch_timeout_seconds=2.0,
        delivery_timeout_seconds=2.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
