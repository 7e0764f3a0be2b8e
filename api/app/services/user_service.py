from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash, verify_password
from app.models.user import Organization, User
from app.utils.slugify import organization_slug


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str | uuid.UUID) -> User | None:
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        return None
    result = await session.execute(select(User).where(User.id == user_uuid))
    return result.scalar_one_or_none()


async def get_organization_by_slug(session: AsyncSession, slug: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def create_organization(
    session: AsyncSession, name: str, *, links: dict[str, str] | None = None
) -> Organization:
    """Create an organization with a unique slug derived from its name."""
    slug = organization_slug(name)
    if await get_organization_by_slug(session, slug):
        slug = organization_slug(name, uuid.uuid4().hex[:6])
    organization = Organization(name=name.strip(), slug=slug, links=links or {})
    session.add(organization)
    await session.flush()
    return organization


async def create_user(
    session: AsyncSession,
    email: str,
    password: str,
    display_name: str | None = None,
    *,
    organization_name: str | None = None,
    organization_id: uuid.UUID | None = None,
    role: str | None = None,
) -> User:
    """Register a user.

    Without ``organization_id`` a new organization is created and the user owns it.
    """
    existing = await get_user_by_email(session, email)
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    if organization_id is None:
        organization = await create_organization(
            session, organization_name or display_name or email.split("@")[0]
        )
        organization_id = organization.id
        role = role or "owner"
    user = User(
        organization_id=organization_id,
        email=email.lower(),
        hashed_password=get_password_hash(password),
        display_name=display_name,
        role=role or "staff",
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def authenticate_user(session: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(session, email)
    if not user or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return user
