"""Field updates on platform records for update_field/update_status actions.

Invariants:
- Only tables listed in ``automation_updatable_tables`` can be written.
- Only existing, non-key columns can be set.
- Updates are scoped to the caller's organization.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.errors import ActionExecutionError
from app.core.config import settings
from app.db.base import Base

logger = logging.getLogger("app.services.record_service")

_PROTECTED_COLUMNS = {"id", "organization_id", "created_at"}


class RecordUpdater:
    def __init__(self, session: AsyncSession, *, allowed_tables: list[str] | None = None) -> None:
        self.session = session
        self.allowed_tables = set(allowed_tables if allowed_tables is not None else settings.automation_updatable_tables)

    async def update(
        self, *, organization_id: uuid.UUID, table: str, record_id: str, values: dict[str, Any]
    ) -> int:
        """Apply ``values`` to one record and return the number of rows changed."""
        if table not in self.allowed_tables:
            raise ActionExecutionError(f"table_not_updatable:{table}")
        target = Base.metadata.tables.get(table)
        if target is None:
            raise ActionExecutionError(f"unknown_table:{table}")
        for column in values:
            if column in _PROTECTED_COLUMNS or column not in target.c:
                raise ActionExecutionError(f"column_not_updatable:{table}.{column}")
        try:
            record_uuid = uuid.UUID(str(record_id))
        except ValueError as exc:
            raise ActionExecutionError(f"invalid_record_id:{record_id}") from exc

        stmt = (
            update(target)
            .where(target.c.id == record_uuid, target.c.organization_id == organization_id)
            .values(**values)
        )
        result = await self.session.execute(stmt)
        logger.info("Updated %s %s fields=%s rows=%s", table, record_uuid, sorted(values), result.rowcount)
        return result.rowcount
