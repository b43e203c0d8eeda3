"""API E2E integration tests: HTTP requests against real Postgres.

Tests the full stack: httpx -> FastAPI middleware -> route handler ->
orchestrator -> SqlSampleStore -> Postgres -> response serialization.

Requires Docker to be running (testcontainers).
"""

from zoneinfo import ZoneInfo

import httpx
import pytest

from main import app
from shared.config import Settings
from vitals.adapters.fixture import FixtureProvider
from vitals.api import get_orchestrator, get_store
from vitals.sync import SyncOrchestrator
from tests.conftest import FIXTURES_DIR, NOW

USER = "e2e-user"


@pytest.fixture
async def api_client(sql_store, sql_locks):
    provider = FixtureProvider.from_file(FIXTURES_DIR / "google_fit_day.json")
    orchestrator = SyncOrchestrator(
        sql_store,
        provider,
        locks=sql_locks,
        config=Settings(_env_file=None, timezone="UTC"),
        tz=ZoneInfo("UTC"),
        clock=lambda: NOW,
    )
    app.dependency_overrides[get_store] = lambda: sql_store
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    await orchestrator.aclose()


# ── Sync then read ──────────────────────────────────────────────


async def test_sync_today_then_dashboard(api_client):
    resp = await api_client.post(f"/api/v1/users/{USER}/sync/today")
    assert resp.status_code == 202
    assert resp.json()["data"]["status"] == "ok"

    dashboard = await api_client.get(f"/api/v1/users/{USER}/dashboard", params={"name": "Ada L"})
    data = dashboard.json()["data"]
    assert data["status"] == "ready"
    assert data["user_name"] == "Ada"
    assert data["steps"] == 2300
    assert data["sleep_minutes"] == 180
    assert "X-Request-ID" in dashboard.headers


async def test_metric_resync_is_idempotent(api_client):
    first = await api_client.post(f"/api/v1/users/{USER}/sync/CALORIES")
    second = await api_client.post(f"/api/v1/users/{USER}/sync/CALORIES")

    assert first.json()["data"]["results"][0]["inserted"] == 2
    assert second.json()["data"]["results"][0]["inserted"] == 0
    assert second.json()["data"]["results"][0]["unchanged"] == 2


async def test_heart_rate_history(api_client):
    await api_client.post(f"/api/v1/users/{USER}/sync/HEART_RATE")

    resp = await api_client.get(f"/api/v1/users/{USER}/history", params={"metric": "HEART_RATE"})

    data = resp.json()["data"]
    assert data["min_bpm"] == 65.0
    assert data["max_bpm"] == 90.0
    assert len(data["per_minute"]) == 3


async def test_error_is_problem_json(api_client):
    resp = await api_client.get(
        f"/api/v1/users/{USER}/sleep/nights", params={"start": "2024-03-10", "end": "2024-03-01"}
    )
    assert resp.status_code == 400
    assert resp.headers["content-type"] == "application/problem+json"
