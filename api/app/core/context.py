"""Per-request identity passed explicitly into service calls."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

AUTOMATION_ADMIN_ROLES = frozenset({"owner", "admin", "finance"})


@dataclass(frozen=True, slots=True)
class RequestContext:
    organization_id: uuid.UUID
    user_id: uuid.UUID | None = None
    role: str = "staff"

    @property
    def can_manage_automations(self) -> bool:
        return self.role in AUTOMATION_ADMIN_ROLES
