"""Time-based automation schedules.

Invariants:
- A schedule fires exactly one rule of its own organization.
- One timed firing per schedule and minute is logged and run at most once,
  even when rq-scheduler delivers the job twice.
- Registration with rq-scheduler follows every create, update and delete.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from crontab import CronTab
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.events import EventType
from app.core.context import RequestContext
from app.jobs import schedule_registry
from app.models.automation import AutomationRule, AutomationSchedule
from app.schema.schedule import AutomationScheduleCreate, AutomationScheduleUpdate
from app.services import automation_engine, automation_service

logger = logging.getLogger("app.services.schedule_service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_run_after(schedule: AutomationSchedule, now: datetime) -> datetime | None:
    """Return when the schedule fires next, or None when it never will again."""
    match schedule.schedule_type:
        case "cron":
            naive_utc = now.astimezone(timezone.utc).replace(tzinfo=None)
            seconds = CronTab(schedule.cron_expression).next(now=naive_utc, default_utc=True)
            return now + timedelta(seconds=seconds)
        case "interval":
            return now + timedelta(minutes=schedule.interval_minutes)
        case "once":
            return schedule.run_at if not schedule.run_count else None
    return None


async def list_schedules(session: AsyncSession, ctx: RequestContext) -> list[AutomationSchedule]:
    result = await session.execute(
        select(AutomationSchedule)
        .where(AutomationSchedule.organization_id == ctx.organization_id)
        .order_by(AutomationSchedule.created_at.asc(), AutomationSchedule.name.asc())
    )
    return list(result.scalars().all())


async def get_schedule(session: AsyncSession, ctx: RequestContext, *, schedule_id: uuid.UUID) -> AutomationSchedule:
    result = await session.execute(
        select(AutomationSchedule).where(
            AutomationSchedule.id == schedule_id, AutomationSchedule.organization_id == ctx.organization_id
        )
    )
    schedule = result.scalar_one_or_none()
    if not schedule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    return schedule


async def _name_taken(
    session: AsyncSession, ctx: RequestContext, name: str, *, exclude: uuid.UUID | None = None
) -> bool:
    stmt = select(AutomationSchedule.id).where(
        AutomationSchedule.organization_id == ctx.organization_id, AutomationSchedule.name == name
    )
    if exclude is not None:
        stmt = stmt.where(AutomationSchedule.id != exclude)
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def create_schedule(
    session: AsyncSession, ctx: RequestContext, *, payload: AutomationScheduleCreate
) -> AutomationSchedule:
    """Create a schedule for one of the organization's rules and register it."""
    await automation_service.get_rule(session, ctx, rule_id=payload.rule_id)
    if await _name_taken(session, ctx, payload.name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Schedule name already exists")
    schedule = AutomationSchedule(
        organization_id=ctx.organization_id,
        rule_id=payload.rule_id,
        name=payload.name,
        description=payload.description,
        schedule_type=payload.schedule_type,
        cron_expression=payload.cron_expression,
        interval_minutes=payload.interval_minutes,
        run_at=payload.run_at,
        is_active=payload.is_active,
        run_count=0,
    )
    schedule.next_run_at = next_run_after(schedule, _utcnow())
    session.add(schedule)
    await session.commit()
    await session.refresh(schedule)
    schedule_registry.register_automation_schedule(schedule)
    logger.info("Created %s schedule %s for rule %s", schedule.schedule_type, schedule.id, schedule.rule_id)
    return schedule


async def update_schedule(
    session: AsyncSession,
    ctx: RequestContext,
    *,
    schedule: AutomationSchedule,
    payload: AutomationScheduleUpdate,
) -> AutomationSchedule:
    updates = payload.model_dump(exclude_unset=True)
    if "name" in updates and await _name_taken(session, ctx, updates["name"], exclude=schedule.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Schedule name already exists")
    timing = {"cron": "cron_expression", "interval": "interval_minutes", "once": "run_at"}[schedule.schedule_type]
    if timing in updates and updates[timing] is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{schedule.schedule_type} schedules need {timing}",
        )
    for field, value in updates.items():
        setattr(schedule, field, value)
    if timing in updates and schedule.schedule_type == "once":
        schedule.run_count = 0
    schedule.next_run_at = next_run_after(schedule, _utcnow())
    await session.commit()
    await session.refresh(schedule)
    schedule_registry.register_automation_schedule(schedule)
    return schedule


async def delete_schedule(session: AsyncSession, *, schedule: AutomationSchedule) -> None:
    schedule_registry.cancel_automation_schedule(schedule.id)
    await session.delete(schedule)
    await session.commit()


async def run_schedule(
    session: AsyncSession,
    *,
    schedule_id: uuid.UUID,
    fired_at: datetime | None = None,
    manual: bool = False,
) -> dict[str, Any]:
    """Fire a schedule's rule and record the outcome on the schedule.

    Timed firings are logged as ``schedule.fired`` events keyed by schedule and
    minute, so a duplicate delivery is skipped. Manual firings are always run
    and leave the timing state alone.
    """
    schedule = await session.get(AutomationSchedule, schedule_id)
    if schedule is None:
        return {"schedule_id": str(schedule_id), "status": "failed", "error": "schedule_not_found"}
    if not schedule.is_active and not manual:
        return {"schedule_id": str(schedule_id), "status": "skipped", "error": "schedule_inactive"}

    fired_at = fired_at or _utcnow()
    payload = {
        "trigger": "manual" if manual else "scheduled",
        "schedule_id": str(schedule.id),
        "schedule_name": schedule.name,
        "fired_at": fired_at.isoformat(),
    }
    log_entry, duplicate = await automation_service.log_event(
        session,
        organization_id=schedule.organization_id,
        event_type=EventType.SCHEDULE_FIRED.value,
        payload=payload,
        source_type="manual" if manual else "cron",
        source_id=None if manual else f"schedule:{schedule.id}:{fired_at:%Y-%m-%dT%H:%M}",
    )
    if duplicate:
        await session.commit()
        logger.info("Schedule %s already fired at %s", schedule.id, f"{fired_at:%Y-%m-%dT%H:%M}")
        return {"schedule_id": str(schedule.id), "status": "skipped", "error": "already_fired"}

    rule = await session.get(AutomationRule, schedule.rule_id)
    run = await automation_engine.execute_rule(session, rule=rule, payload=payload, event_id=log_entry.id)

    log_entry.rules_matched = 1
    log_entry.rules_executed = 0 if run.status == "skipped" else 1
    schedule.last_run_at = fired_at
    schedule.run_count = (schedule.run_count or 0) + 1
    schedule.last_error = run.error[:500] if run.error and run.status in {"failed", "partial"} else None
    if not manual:
        schedule.next_run_at = next_run_after(schedule, fired_at)
        if schedule.schedule_type == "once":
            schedule.is_active = False
    await session.commit()
    logger.info("Schedule %s fired rule %s: %s", schedule.id, rule.id, run.status)
    return {**automation_engine.run_summary(run), "schedule_id": str(schedule.id)}


async def register_active_schedules(session: AsyncSession) -> int:
    """Re-register every active schedule with rq-scheduler, e.g. after a Redis flush."""
    if not schedule_registry.scheduler_available():
        return 0
    result = await session.execute(select(AutomationSchedule).where(AutomationSchedule.is_active.is_(True)))
    registered = sum(
        1 for schedule in result.scalars().all() if schedule_registry.register_automation_schedule(schedule)
    )
    logger.info("Registered %d automation schedule(s)", registered)
    return registered
