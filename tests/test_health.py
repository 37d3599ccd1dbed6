"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the store answers
  - 503 and 'degraded' when the database does not answer
  - No authentication required
  - The background expiry sweep keeps running after an unexpected error and
    stops cleanly when cancelled
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from types import SimpleNamespace

from api.main import _sweep_loop
from auth.errors import PersistenceError


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _token, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_failure(api_client, monkeypatch):
    """A store that cannot be reached turns the instance unhealthy."""
    client, _, _ = api_client
    monkeypatch.setattr(client.app.state.user_store, "ping", lambda: False)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unexpected_host_rejected(api_client):
    """TrustedHostMiddleware refuses Host headers outside ALLOWED_HOSTS."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400


def test_infrastructure_fault_is_opaque_500(api_client, monkeypatch):
    """A failing database surfaces as a generic 500 without internals."""
    client, token, _ = api_client

    def broken(*args, **kwargs):
        raise PersistenceError("get_by_id failed: disk I/O error")

    monkeypatch.setattr(client.app.state.user_store, "get_by_id", broken)
    resp = client.get("/api/v1/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 500
    assert resp.json() == {"error": {"code": "internal_error", "message": "An unexpected error occurred.", "detail": None}}
    assert "disk" not in resp.text


def test_sweep_loop_survives_unexpected_errors():
    """A sweep that blows up is logged and retried; cancel ends the task."""
    calls = []

    def sweep() -> int:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("unexpected")
        return 0

    app = SimpleNamespace(
        state=SimpleNamespace(
            settings=SimpleNamespace(refresh_token_sweep_seconds=0),
            auth_service=SimpleNamespace(delete_expired_refresh_tokens=sweep),
        )
    )

    async def run() -> asyncio.Task:
        task = asyncio.create_task(_sweep_loop(app))
        for _ in range(500):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        return task

    task = asyncio.run(run())
    assert len(calls) >= 2
    assert task.cancelled()
