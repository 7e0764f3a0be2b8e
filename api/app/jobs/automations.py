"""Worker job entrypoint for automation rule execution."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from app.db.session import async_session

logger = logging.getLogger("app.jobs.automations")


def run_automation_rule_job(*, rule_id: str, event_id: str | None = None) -> dict[str, Any]:
    """Execute one matched rule for one logged event within a worker context."""
    from app.services import automation_engine

    async def _run() -> dict[str, Any]:
        async with async_session() as session:
            return await automation_engine.execute_rule_by_id(
                session,
                rule_id=uuid.UUID(rule_id),
                event_id=uuid.UUID(event_id) if event_id else None,
            )

    result = asyncio.run(_run())
    logger.info("Automation run complete for %s (%s)", rule_id, result.get("status"))
    return result
