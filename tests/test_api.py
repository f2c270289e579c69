import pytest
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from session_monitor.api.routes import connection, devices, events, health, reports
from session_monitor.collectors.connection_supervisor import ConnectionSupervisor
from session_monitor.collectors.event_collector import EventCollector

from conftest import make_payload


def create_app(transport):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        collector = EventCollector(tz=timezone.utc)
        collector.supervisor = ConnectionSupervisor(transport, scheduler=MagicMock())
        await collector.start()
        app.state.collector = collector
        yield
        await collector.stop()

    app = FastAPI(lifespan=lifespan)
    for module in (health, devices, events, reports, connection):
        app.include_router(module.router, prefix="/api/v1")
    return app


@pytest.fixture
def client(mock_transport):
    with TestClient(create_app(mock_transport)) as test_client:
        yield test_client


def inject(client, device_id, event, at, **extra):
    response = client.post("/api/v1/events", content=make_payload(device_id, event, at, **extra))
    assert response.status_code == 202, response.text
    return response.json()


def test_health(client):
    assert client.get("/api/v1/health").json()["status"] == "healthy"

    detailed = client.get("/api/v1/health/detailed").json()
    assert detailed["collector"] == "running"
    assert detailed["connection"] == "disconnected"


def test_inject_and_list_devices(client):
    now = datetime.now(timezone.utc)
    body = inject(client, "console-1", "game_start", now - timedelta(minutes=5), deviceName="Living Room")
    assert body["outcome"] == "opened"
    assert body["device"]["status"] == "online_with_session"

    inject(client, "tablet", "game_start", now - timedelta(hours=2))
    inject(client, "tablet", "game_end", now - timedelta(hours=1))

    listing = client.get("/api/v1/devices").json()
    assert listing["total"] == 2
    assert listing["online"] == 1
    assert [d["id"] for d in listing["devices"]] == ["console-1", "tablet"]
    assert listing["devices"][0]["display_name"] == "Living Room"
    assert listing["devices"][0]["total_ms"] >= 5 * 60 * 1000

    offline = client.get("/api/v1/devices", params={"online": False}).json()
    assert [d["id"] for d in offline["devices"]] == ["tablet"]


def test_get_device_includes_sessions(client):
    now = datetime.now(timezone.utc)
    inject(client, "tablet", "game_start", now - timedelta(hours=2))
    inject(client, "tablet", "game_end", now - timedelta(hours=1))

    device = client.get("/api/v1/devices/tablet").json()
    assert len(device["sessions"]) == 1
    assert device["sessions"][0]["duration_ms"] == 60 * 60 * 1000
    assert device["has_estimated_sessions"] is False


def test_unknown_device_is_404(client):
    assert client.get("/api/v1/devices/missing").status_code == 404
    assert client.delete("/api/v1/devices/missing").status_code == 404


def test_delete_device(client):
    inject(client, "console-1", "game_start", datetime.now(timezone.utc))

    assert client.delete("/api/v1/devices/console-1").status_code == 200
    assert client.get("/api/v1/devices/console-1").status_code == 404
    assert client.get("/api/v1/events").json()["events"] == []


def test_malformed_injection_is_422(client):
    response = client.post("/api/v1/events", content=b"{broken")
    assert response.status_code == 422
    assert client.get("/api/v1/events").json()["total"] == 0


def test_events_newest_first(client):
    now = datetime.now(timezone.utc)
    inject(client, "console-1", "game_start", now - timedelta(minutes=10))
    inject(client, "console-1", "game_end", now)

    body = client.get("/api/v1/events", params={"limit": 1}).json()
    assert body["total"] == 1
    assert body["events"][0]["kind"] == "end"


def test_daily_report(client):
    inject(client, "console-1", "game_start", "2024-03-10T23:00:00Z")
    inject(client, "console-1", "game_end", "2024-03-11T01:00:00Z")

    report = client.get(
        "/api/v1/reports/daily",
        params={"from_date": "2024-03-10", "to_date": "2024-03-11"}
    ).json()

    assert [bucket["date"] for bucket in report["buckets"]] == ["2024-03-11", "2024-03-10"]
    assert report["summary"]["total_ms"] == 2 * 60 * 60 * 1000


def test_daily_report_rejects_inverted_range(client):
    response = client.get(
        "/api/v1/reports/daily",
        params={"from_date": str(date(2024, 3, 11)), "to_date": str(date(2024, 3, 10))}
    )
    assert response.status_code == 422


def test_overview(client):
    inject(client, "console-1", "game_start", datetime.now(timezone.utc) - timedelta(minutes=1))
    body = client.get("/api/v1/reports/overview").json()
    assert body["online_count"] == 1
    assert body["last_24h_ms"] >= 60 * 1000


def test_connection_lifecycle(client, mock_transport):
    status = client.get("/api/v1/connection").json()
    assert status["state"] == "disconnected"
    assert status["max_attempts"] == 5

    status = client.post(
        "/api/v1/connection/connect",
        json={"endpoint": "ws://broker.local:8083/mqtt", "channel": "game"}
    ).json()
    assert status["state"] == "connecting"
    assert status["auto_reconnect"] is True
    mock_transport.connect.assert_called_once_with("ws://broker.local:8083/mqtt", "game")

    status = client.post("/api/v1/connection/disconnect").json()
    assert status["state"] == "disconnected"
    assert status["auto_reconnect"] is False

    status = client.post("/api/v1/connection/wake").json()
    assert status["state"] == "disconnected"
