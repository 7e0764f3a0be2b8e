"""FastAPI application entrypoint and health reporting utilities.

Invariants:
- Health detail is only exposed to authenticated users or allowlisted hosts.
"""

import ipaddress
import logging
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import get_optional_current_user
from app.api.router import api_router
from app.automation.observability import collaborator_monitor
from app.core.config import settings
from app.db.session import async_session
from app.jobs.schedule_registry import ensure_schedules, scheduler_available
from app.models.user import User
from app.services import schedule_service

logging.basicConfig(level=settings.log_level.upper())

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def _register_schedules() -> None:
    """Register scheduled jobs and stored automation schedules on startup."""
    ensure_schedules()
    if scheduler_available():
        async with async_session() as session:
            await schedule_service.register_active_schedules(session)


def _summarize_collaborators(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense collaborator monitor state into health-friendly telemetry.

    An open circuit or an action kind with three or more failures marks the
    collaborator degraded; a lingering last_error is reported as an issue only.
    """
    issues: list[dict[str, Any]] = []
    collaborators: dict[str, Any] = {}
    for name, payload in snapshot.items():
        circuit = payload.get("circuit", {})
        operations = payload.get("operations", {})
        remaining = float(circuit.get("remaining_cooldown") or 0.0)
        circuit_open = remaining > 0
        state = "degraded" if circuit_open else "ok"
        if circuit_open:
            issues.append(
                {
                    "collaborator": name,
                    "reason": "circuit_open",
                    "remaining_cooldown": round(remaining, 2),
                    "open_tenants": sorted(payload.get("tenants", {})),
                }
            )
        failure_total = 0
        for action_type, metrics in operations.items():
            failed = int(metrics.get("failed") or 0)
            failure_total += failed
            if metrics.get("last_error"):
                issues.append(
                    {
                        "collaborator": name,
                        "action_type": action_type,
                        "reason": "last_error",
                        "error": metrics["last_error"],
                    }
                )
            if failed >= 3:
                issues.append(
                    {"collaborator": name, "action_type": action_type, "reason": "repeated_failures", "failed": failed}
                )
                state = "degraded"
        collaborators[name] = {
            "state": state,
            "scope": payload.get("scope", "global"),
            "circuit_open": circuit_open,
            "circuit": circuit,
            "operations": operations,
            "failure_total": failure_total,
        }
    return {"collaborators": collaborators, "issues": issues}


def _entry_matches(entry: str, candidate: str) -> bool:
    """Return True if an allowlist entry matches a candidate host/IP."""
    try:
        network = ipaddress.ip_network(entry, strict=False)
        return ipaddress.ip_address(candidate) in network
    except ValueError:
        return entry.casefold() == candidate.casefold()


def _ip_or_host_allowlisted(request: Request) -> bool:
    if not settings.health_allowlist:
        return False
    candidates: list[str] = []
    if request.client and request.client.host:
        candidates.append(request.client.host)
    host_header = request.headers.get("host")
    if host_header:
        candidates.append(host_header.split(":")[0])
    return any(
        entry and _entry_matches(entry, candidate)
        for candidate in candidates
        for entry in settings.health_allowlist
    )


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(request: Request, current_user: User | None = Depends(get_optional_current_user)) -> dict[str, Any]:
    """Return health status and, for trusted callers, collaborator telemetry."""
    if not current_user and not _ip_or_host_allowlisted(request):
        return {"status": "ok"}

    snapshot = await collaborator_monitor.snapshot()
    telemetry = _summarize_collaborators(snapshot)
    status = "ok" if not telemetry["issues"] else "degraded"
    return {"status": status, "collaborators": telemetry}
