"""Scheduled automation endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_request_context, require_automation_admin
from app.core.context import RequestContext
from app.schema.schedule import AutomationScheduleCreate, AutomationScheduleRead, AutomationScheduleUpdate
from app.services import schedule_service

router = APIRouter()


@router.get("", response_model=list[AutomationScheduleRead])
async def list_automation_schedules(
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[AutomationScheduleRead]:
    schedules = await schedule_service.list_schedules(session, ctx)
    return [AutomationScheduleRead.model_validate(schedule) for schedule in schedules]


@router.post("", response_model=AutomationScheduleRead, status_code=status.HTTP_201_CREATED)
async def create_automation_schedule(
    payload: AutomationScheduleCreate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> AutomationScheduleRead:
    schedule = await schedule_service.create_schedule(session, ctx, payload=payload)
    return AutomationScheduleRead.model_validate(schedule)


@router.patch("/{schedule_id}", response_model=AutomationScheduleRead)
async def update_automation_schedule(
    schedule_id: uuid.UUID,
    payload: AutomationScheduleUpdate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> AutomationScheduleRead:
    schedule = await schedule_service.get_schedule(session, ctx, schedule_id=schedule_id)
    schedule = await schedule_service.update_schedule(session, ctx, schedule=schedule, payload=payload)
    return AutomationScheduleRead.model_validate(schedule)


@router.delete(
    "/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_schedule(
    schedule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> None:
    schedule = await schedule_service.get_schedule(session, ctx, schedule_id=schedule_id)
    await schedule_service.delete_schedule(session, schedule=schedule)


@router.post("/{schedule_id}/run")
async def run_automation_schedule(
    schedule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> dict:
    """Fire a schedule's rule now without touching its timing."""
    schedule = await schedule_service.get_schedule(session, ctx, schedule_id=schedule_id)
    return await schedule_service.run_schedule(session, schedule_id=schedule.id, manual=True)
