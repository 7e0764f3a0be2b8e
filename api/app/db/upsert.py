"""Insert-if-absent helper that leaves the session usable after a conflict."""

from __future__ import annotations

import uuid
from typing import Any, Sequence

from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    *,
    conflict_columns: Sequence[str],
) -> uuid.UUID | None:
    """Insert one row and return its id, or None when a unique constraint already holds it.

    Postgres and SQLite use ``ON CONFLICT DO NOTHING``; other dialects fall back
    to a plain insert and surface the IntegrityError.
    """
    row = {"id": uuid.uuid4(), **values}
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**row).on_conflict_do_nothing(index_elements=list(conflict_columns))
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**row).on_conflict_do_nothing(index_elements=list(conflict_columns))
    else:
        stmt = insert(model).values(**row)
    result = await session.execute(stmt.returning(model.id))
    return result.scalar_one_or_none()
