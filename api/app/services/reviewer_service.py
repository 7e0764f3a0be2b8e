"""Grant reviewer assignment for assign_reviewer actions."""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.errors import ActionExecutionError
from app.db.upsert import insert_ignore
from app.models.grants import GrantReviewer, ReviewerAssignment


class ReviewerPool:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _least_loaded_reviewer(self, organization_id: uuid.UUID, application_id: str) -> str:
        """Pick the active reviewer with the fewest open assignments, skipping ones already on this application."""
        already = select(ReviewerAssignment.reviewer_profile_id).where(
            ReviewerAssignment.organization_id == organization_id,
            ReviewerAssignment.application_id == application_id,
        )
        load = (
            select(ReviewerAssignment.reviewer_profile_id, func.count().label("open_count"))
            .where(
                ReviewerAssignment.organization_id == organization_id,
                ReviewerAssignment.status == "assigned",
            )
            .group_by(ReviewerAssignment.reviewer_profile_id)
            .subquery()
        )
        stmt = (
            select(GrantReviewer.profile_id)
            .outerjoin(load, load.c.reviewer_profile_id == GrantReviewer.profile_id)
            .where(
                GrantReviewer.organization_id == organization_id,
                GrantReviewer.is_active.is_(True),
                GrantReviewer.profile_id.not_in(already),
            )
            .order_by(func.coalesce(load.c.open_count, 0).asc(), GrantReviewer.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        profile_id = result.scalar_one_or_none()
        if profile_id is None:
            raise ActionExecutionError("no_reviewer_available")
        return profile_id

    async def assign(
        self,
        *,
        organization_id: uuid.UUID,
        application_id: str,
        reviewer_profile_id: str | None,
        role: str,
    ) -> str:
        """Assign a named reviewer, or the least-loaded active one when none is given."""
        profile_id = reviewer_profile_id or await self._least_loaded_reviewer(organization_id, application_id)
        await insert_ignore(
            self.session,
            ReviewerAssignment,
            {
                "organization_id": organization_id,
                "application_id": application_id,
                "reviewer_profile_id": profile_id,
                "role": role,
                "status": "assigned",
            },
            conflict_columns=("organization_id", "application_id", "reviewer_profile_id"),
        )
        return profile_id


async def add_reviewer(session: AsyncSession, *, organization_id: uuid.UUID, profile_id: str) -> GrantReviewer:
    reviewer = GrantReviewer(organization_id=organization_id, profile_id=profile_id)
    session.add(reviewer)
    await session.commit()
    await session.refresh(reviewer)
    return reviewer
