"""Worker entrypoint for scheduled automation rules."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from app.db.session import async_session

logger = logging.getLogger("app.jobs.schedules")


def run_scheduled_automation_job(*, schedule_id: str) -> dict[str, Any]:
    """Fire one schedule's rule; called by rq-scheduler on the schedule's timing."""
    from app.services import schedule_service

    async def _run() -> dict[str, Any]:
        async with async_session() as session:
            return await schedule_service.run_schedule(session, schedule_id=uuid.UUID(schedule_id))

    result = asyncio.run(_run())
    logger.info("Schedule %s fired (%s)", schedule_id, result.get("status"))
    return result
