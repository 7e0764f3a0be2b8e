from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.automation.recipes import foundation_recipes
from app.models.automation import AutomationRule
from app.models.grants import GrantReviewer
from app.models.records import MemberOrganization
from app.models.user import Organization, User
from app.scripts import seed as seed_script


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_seed_populates_demo_organization(session):
    await seed_script.seed(session=session)

    user = (await session.execute(select(User))).scalar_one()
    assert user.email == seed_script.DEMO_EMAIL
    assert user.role == "owner"

    organization = await session.get(Organization, user.organization_id)
    assert organization is not None
    assert organization.name == seed_script.ORGANIZATION_NAME
    assert organization.template_context()["portal_url"] == seed_script.ORGANIZATION_LINKS["portal_url"]

    rule_names = (await session.execute(select(AutomationRule.name))).scalars().all()
    assert sorted(rule_names) == sorted(recipe.name for recipe in foundation_recipes())

    reviewers = (await session.execute(select(GrantReviewer.profile_id))).scalars().all()
    assert sorted(reviewers) == sorted(seed_script.DEMO_REVIEWERS)
    assert await _count(session, MemberOrganization) == len(seed_script.DEMO_MEMBERS)


@pytest.mark.asyncio
async def test_seed_is_idempotent(session):
    await seed_script.seed(session=session)
    await seed_script.seed(session=session)

    assert await _count(session, User) == 1
    assert await _count(session, AutomationRule) == len(foundation_recipes())
    assert await _count(session, GrantReviewer) == len(seed_script.DEMO_REVIEWERS)
    assert await _count(session, MemberOrganization) == len(seed_script.DEMO_MEMBERS)
