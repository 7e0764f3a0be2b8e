from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_request_context
from app.core.context import RequestContext
from app.schema.automation import WorkItemRead
from app.services import work_item_service

router = APIRouter()


@router.get("", response_model=list[WorkItemRead])
async def list_work_items(
    status: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[WorkItemRead]:
    """List the organization's work queue, newest first."""
    items = await work_item_service.list_work_items(
        session, organization_id=ctx.organization_id, status=status, limit=limit
    )
    return [WorkItemRead.model_validate(item) for item in items]
