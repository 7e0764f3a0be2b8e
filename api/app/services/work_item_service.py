"""Work item storage for create_work_item/create_task actions and the work queue API."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.errors import DuplicateWorkItemError
from app.automation.executor import WorkItemDraft
from app.db.upsert import insert_ignore
from app.models.work import WorkItem


class WorkItemRepository:
    """Work-item store; a dedupe key maps to at most one row per organization."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_dedupe_key(self, *, organization_id: uuid.UUID, dedupe_key: str) -> str | None:
        result = await self.session.execute(
            select(WorkItem.id).where(
                WorkItem.organization_id == organization_id, WorkItem.dedupe_key == dedupe_key
            )
        )
        work_item_id = result.scalar_one_or_none()
        return str(work_item_id) if work_item_id else None

    async def create(self, *, organization_id: uuid.UUID, draft: WorkItemDraft) -> str:
        values = {
            "organization_id": organization_id,
            "item_type": draft.item_type,
            "title": draft.title[:500],
            "description": draft.description,
            "priority": draft.priority,
            "status": "open",
            "reference_type": draft.reference_type,
            "reference_id": draft.reference_id,
            "dedupe_key": draft.dedupe_key,
            "due_at": draft.due_at,
            "assignee_profile_id": draft.assignee_profile_id,
            "assignee_role": draft.assignee_role,
        }
        if draft.dedupe_key:
            work_item_id = await insert_ignore(
                self.session, WorkItem, values, conflict_columns=("organization_id", "dedupe_key")
            )
            if work_item_id is None:
                raise DuplicateWorkItemError(draft.dedupe_key)
            return str(work_item_id)
        item = WorkItem(**values)
        self.session.add(item)
        await self.session.flush()
        return str(item.id)


async def list_work_items(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    status: str | None = None,
    limit: int = 100,
) -> list[WorkItem]:
    """List work items for an organization, newest first."""
    stmt = select(WorkItem).where(WorkItem.organization_id == organization_id)
    if status:
        stmt = stmt.where(WorkItem.status == status)
    result = await session.execute(stmt.order_by(WorkItem.created_at.desc()).limit(limit))
    return list(result.scalars().all())
