"""Seed script for demo data in local/dev environments."""

from __future__ import annotations

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.db.session import async_session
from app.models.grants import GrantReviewer
from app.models.records import MemberOrganization
from app.models.user import Organization, User
from app.services import automation_service, reviewer_service, user_service
from app.utils.slugify import organization_slug

DEMO_EMAIL = "director@riverbend.example.org"
DEMO_PASSWORD = "changeme123"
DEMO_DISPLAY_NAME = "Demo Director"
ORGANIZATION_NAME = "Riverbend Community Foundation"
ORGANIZATION_LINKS = {
    "portal_url": "https://portal.riverbend.example.org",
    "donor_portal_url": "https://portal.riverbend.example.org/donors",
    "volunteer_handbook_url": "https://portal.riverbend.example.org/volunteers/handbook",
}
DEMO_REVIEWERS = ("reviewer-ana", "reviewer-ben", "reviewer-chidi")
DEMO_MEMBERS = (
    ("Northside Food Pantry", "active"),
    ("Lakeview Arts Collective", "active"),
    ("Eastgate Youth League", "lapsed"),
)


async def seed(session: AsyncSession | None = None) -> None:
    """Seed demo data into the database."""
    if session is None:
        async with async_session() as managed_session:
            await _seed_session(managed_session)
    else:
        await _seed_session(session)


async def _seed_session(session: AsyncSession) -> None:
    """Populate a session with a demo organization, its owner and the recipe pack."""
    user = await _ensure_owner(session)
    ctx = RequestContext(organization_id=user.organization_id, user_id=user.id, role=user.role)
    await _ensure_reviewers(session, ctx)
    await _ensure_members(session, ctx)
    installed, skipped = await automation_service.install_recipes(session, ctx, install_all=True)

    print(
        f"Seed complete - organization: {organization_slug(ORGANIZATION_NAME)}, "
        f"recipes installed: {len(installed)}, already present: {len(skipped)}"
    )


async def _ensure_owner(session: AsyncSession) -> User:
    user = await user_service.get_user_by_email(session, DEMO_EMAIL)
    if user:
        return user
    user = await user_service.create_user(
        session,
        email=DEMO_EMAIL,
        password=DEMO_PASSWORD,
        display_name=DEMO_DISPLAY_NAME,
        organization_name=ORGANIZATION_NAME,
    )
    organization = await session.get(Organization, user.organization_id)
    if organization is not None:
        organization.links = dict(ORGANIZATION_LINKS)
        await session.commit()
    return user


async def _ensure_reviewers(session: AsyncSession, ctx: RequestContext) -> None:
    """Create the grant reviewer pool used by auto-assignment."""
    result = await session.execute(
        select(GrantReviewer.profile_id).where(GrantReviewer.organization_id == ctx.organization_id)
    )
    existing = set(result.scalars().all())
    for profile_id in DEMO_REVIEWERS:
        if profile_id not in existing:
            await reviewer_service.add_reviewer(
                session, organization_id=ctx.organization_id, profile_id=profile_id
            )


async def _ensure_members(session: AsyncSession, ctx: RequestContext) -> None:
    result = await session.execute(
        select(MemberOrganization.name).where(MemberOrganization.organization_id == ctx.organization_id)
    )
    existing = set(result.scalars().all())
    for name, status in DEMO_MEMBERS:
        if name not in existing:
            session.add(MemberOrganization(organization_id=ctx.organization_id, name=name, status=status))
    await session.commit()


def main() -> None:
    """CLI entrypoint for seeding demo data."""
    asyncio.run(seed())


if __name__ == "__main__":
    main()
