"""Maintenance jobs for automation history retention."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import async_session
from app.models.automation import AutomationEventLog, AutomationRun

logger = logging.getLogger("app.jobs.maintenance")


async def prune_automation_history(
    session: AsyncSession, *, retention_days: int | None = None, now: datetime | None = None
) -> dict[str, int]:
    """Delete runs and logged events older than the retention window."""
    days = retention_days if retention_days is not None else settings.event_log_retention_days
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    runs = await session.execute(delete(AutomationRun).where(AutomationRun.started_at < cutoff))
    events = await session.execute(delete(AutomationEventLog).where(AutomationEventLog.received_at < cutoff))
    await session.commit()
    return {"runs": runs.rowcount or 0, "events": events.rowcount or 0}


def prune_automation_history_job(retention_days: int | None = None) -> dict[str, int]:
    """Scheduled cleanup for automation run history and the event log."""

    async def _run() -> dict[str, int]:
        async with async_session() as session:
            return await prune_automation_history(session, retention_days=retention_days)

    deleted = asyncio.run(_run())
    logger.info(
        "Pruned %d automation runs and %d logged events older than %s days",
        deleted["runs"],
        deleted["events"],
        retention_days or settings.event_log_retention_days,
    )
    return deleted
