"""Probe endpoint tests: liveness, readiness with scheduler state, version."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


def _scheduler(running: bool, last_tick_at: datetime | None = None) -> MagicMock:
    scheduler = MagicMock()
    scheduler.running = running
    scheduler.last_tick_at = last_tick_at
    return scheduler


class TestLiveness:
    async def test_alive_without_dependencies(self, client: AsyncClient, redis_mock: AsyncMock) -> None:
        """Liveness never touches Redis or the database."""
        response = await client.get("/health")
        assert (response.status_code, response.json()) == (200, {"status": "healthy"})
        redis_mock.ping.assert_not_awaited()


class TestReadiness:
    """Test the dependency checks behind /ready."""

    async def test_ready_with_scheduler_disabled(self, client: AsyncClient) -> None:
        """Without an in-process scheduler (worker deployment) the engine is still ready."""
        data = (await client.get("/ready")).json()
        assert data == {
            "status": "ready",
            "checks": {"database": "ok", "redis": "ok", "scheduler": "disabled"},
        }

    async def test_redis_failure_degrades(self, client: AsyncClient, redis_mock: AsyncMock) -> None:
        redis_mock.ping.side_effect = ConnectionError("connection refused")
        data = (await client.get("/ready")).json()
        assert data["status"] == "degraded"
        assert data["checks"]["redis"] == "error: connection refused"
        assert data["checks"]["database"] == "ok"

    async def test_running_scheduler_reports_last_tick(self, client: AsyncClient, app: FastAPI) -> None:
        app.state.scheduler = _scheduler(True, datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
        data = (await client.get("/ready")).json()
        assert data["status"] == "ready"
        assert data["checks"]["scheduler"] == "running"
        assert data["checks"]["scheduler_last_tick_at"] == "2026-03-01T12:00:00+00:00"

    async def test_running_scheduler_before_first_tick(self, client: AsyncClient, app: FastAPI) -> None:
        app.state.scheduler = _scheduler(True)
        checks = (await client.get("/ready")).json()["checks"]
        assert "scheduler_last_tick_at" not in checks

    async def test_stopped_scheduler_degrades(self, client: AsyncClient, app: FastAPI) -> None:
        app.state.scheduler = _scheduler(False)
        data = (await client.get("/ready")).json()
        assert data["status"] == "degraded"
        assert data["checks"]["scheduler"] == "stopped"


class TestVersion:
    async def test_version(self, client: AsyncClient) -> None:
        data = (await client.get("/version")).json()
        assert data["service"] == "unic-engine"
        assert data["version"] == "0.1.0"
        assert data["environment"] == "development"
