from __future__ import annotations

import pytest

from app.core.config import settings
from app.tests.utils import register_and_login


def _snapshot(*, remaining: float = 0.0, failed: int = 0, last_error: str | None = None) -> dict[str, object]:
    return {
        "chat": {
            "scope": "global",
            "circuit": {
                "failure_streak": 0,
                "open_until": 0.0,
                "remaining_cooldown": remaining,
                "current_backoff": 30.0,
                "opened_count": 1 if remaining else 0,
            },
            "operations": {
                "slack_notify": {
                    "started": failed + 1,
                    "succeeded": 1,
                    "failed": failed,
                    "rejected": 0,
                    "skipped": 0,
                    "last_latency_ms": 120.0,
                    "last_error": last_error,
                }
            },
        }
    }


@pytest.mark.asyncio
async def test_health_reports_ok_without_auth(client, monkeypatch):
    called = False

    async def _snapshot_stub() -> dict[str, object]:
        nonlocal called
        called = True
        return {}

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)

    response = await client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert "collaborators" not in payload
    assert called is False


@pytest.mark.asyncio
async def test_health_reports_ok_for_authenticated_users(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {}

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)
    await register_and_login(client, prefix="health")

    response = await client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["collaborators"]["collaborators"] == {}
    assert payload["collaborators"]["issues"] == []


@pytest.mark.asyncio
async def test_health_degrades_when_a_circuit_is_open(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return _snapshot(remaining=12.25, failed=1, last_error="slack_http_403")

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)
    await register_and_login(client, prefix="health")

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    telemetry = payload["collaborators"]
    chat = telemetry["collaborators"]["chat"]
    assert chat["state"] == "degraded"
    assert chat["circuit_open"] is True
    assert chat["operations"]["slack_notify"]["last_error"] == "slack_http_403"
    reasons = {issue["reason"] for issue in telemetry["issues"]}
    assert reasons == {"circuit_open", "last_error"}


@pytest.mark.asyncio
async def test_health_allows_allowlisted_clients_without_auth(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {}

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)
    monkeypatch.setattr(settings, "health_allowlist", ["testserver"])

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["collaborators"]["issues"] == []


@pytest.mark.asyncio
async def test_health_flags_repeated_failures(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return _snapshot(failed=3)

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)
    await register_and_login(client, prefix="health")

    response = await client.get("/api/health")
    payload = response.json()
    assert payload["status"] == "degraded"
    issues = payload["collaborators"]["issues"]
    assert any(issue["reason"] == "repeated_failures" for issue in issues)
    assert payload["collaborators"]["collaborators"]["chat"]["state"] == "degraded"


@pytest.mark.asyncio
async def test_health_names_tenants_behind_an_open_tenant_circuit(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {
            "mail": {
                "scope": "tenant",
                "circuit": {"remaining_cooldown": 12.0, "opened_count": 1, "open_tenants": 1},
                "tenants": {"org-a": {"remaining_cooldown": 12.0}},
                "operations": {"send_email": {"failed": 0, "rejected": 4, "last_error": None}},
            }
        }

    monkeypatch.setattr("app.main.collaborator_monitor.snapshot", _snapshot_stub)
    await register_and_login(client, prefix="health")

    payload = (await client.get("/api/health")).json()
    mail = payload["collaborators"]["collaborators"]["mail"]
    assert mail["scope"] == "tenant"
    assert mail["state"] == "degraded"
    assert payload["collaborators"]["issues"] == [
        {"collaborator": "mail", "reason": "circuit_open", "remaining_cooldown": 12.0, "open_tenants": ["org-a"]}
    ]
