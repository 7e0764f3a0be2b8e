"""Entity tag storage for add_tag/remove_tag actions."""

from __future__ import annotations

import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.upsert import insert_ignore
from app.models.tagging import EntityTag


def _normalize(tag: str) -> str:
    return tag.strip().lower()[:64]


class EntityTagStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool:
        """Attach a tag; returns False when it was already present."""
        created = await insert_ignore(
            self.session,
            EntityTag,
            {
                "organization_id": organization_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "tag": _normalize(tag),
            },
            conflict_columns=("organization_id", "entity_type", "entity_id", "tag"),
        )
        return created is not None

    async def remove(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool:
        """Detach a tag; returns False when it was not present."""
        result = await self.session.execute(
            delete(EntityTag).where(
                EntityTag.organization_id == organization_id,
                EntityTag.entity_type == entity_type,
                EntityTag.entity_id == entity_id,
                EntityTag.tag == _normalize(tag),
            )
        )
        return bool(result.rowcount)


async def list_entity_tags(
    session: AsyncSession, *, organization_id: uuid.UUID, entity_type: str, entity_id: str
) -> list[str]:
    """List tag names on an entity sorted by name."""
    result = await session.execute(
        select(EntityTag.tag)
        .where(
            EntityTag.organization_id == organization_id,
            EntityTag.entity_type == entity_type,
            EntityTag.entity_id == entity_id,
        )
        .order_by(EntityTag.tag.asc())
    )
    return list(result.scalars().all())
