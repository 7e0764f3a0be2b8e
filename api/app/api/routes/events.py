"""Event intake: log, match and dispatch domain events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_request_context, require_automation_admin
from app.automation.events import AutomationEvent
from app.core.context import RequestContext
from app.schema.automation import EventCreate, EventDispatchResponse, EventLogRead
from app.services import automation_service

router = APIRouter()


@router.post("", response_model=EventDispatchResponse)
async def emit_event(
    payload: EventCreate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> EventDispatchResponse:
    event = AutomationEvent(
        type=payload.type,
        payload=payload.payload,
        organization_id=ctx.organization_id,
        source_type=payload.source_type,
        source_id=payload.source_id,
    )
    if payload.occurred_at is not None:
        event.occurred_at = payload.occurred_at
    result = await automation_service.emit_event(session, ctx, event)
    return EventDispatchResponse(**result)


@router.get("", response_model=list[EventLogRead])
async def list_events(
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[EventLogRead]:
    events = await automation_service.list_events(session, ctx, limit=limit)
    return [EventLogRead.model_validate(event) for event in events]
