"""Scheduled compliance tick that drives date-based compliance recipes."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.events import AutomationEvent, EventType
from app.core.context import RequestContext
from app.db.session import async_session
from app.models.user import Organization

logger = logging.getLogger("app.jobs.compliance")


async def emit_compliance_ticks(session: AsyncSession, *, tick_date: date | None = None) -> dict[str, Any]:
    """Emit one ``compliance.tick.daily`` per organization; re-running on the same day is a no-op."""
    from app.services import automation_service

    tick_date = tick_date or datetime.now(timezone.utc).date()
    result = await session.execute(select(Organization.id).order_by(Organization.created_at.asc()))
    organization_ids = list(result.scalars().all())
    emitted = 0
    for organization_id in organization_ids:
        event = AutomationEvent(
            type=EventType.COMPLIANCE_TICK_DAILY.value,
            payload={"tick_date": tick_date.isoformat()},
            organization_id=organization_id,
            source_type="cron",
            source_id=f"{EventType.COMPLIANCE_TICK_DAILY.value}:{tick_date.isoformat()}",
        )
        outcome = await automation_service.emit_event(
            session, RequestContext(organization_id=organization_id, role="owner"), event
        )
        if not outcome["duplicate"]:
            emitted += 1
    return {"organizations": len(organization_ids), "emitted": emitted, "tick_date": tick_date.isoformat()}


def emit_compliance_tick_job() -> dict[str, Any]:
    async def _run() -> dict[str, Any]:
        async with async_session() as session:
            return await emit_compliance_ticks(session)

    result = asyncio.run(_run())
    logger.info("Compliance tick emitted for %d of %d organizations", result["emitted"], result["organizations"])
    return result
