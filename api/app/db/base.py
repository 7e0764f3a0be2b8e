"""Import all models here for Alembic autogenerate."""

from app.db.base_class import Base
from app.models import (  # noqa: F401
    automation,
    grants,
    outbox,
    payment,
    records,
    tagging,
    user,
    webhook,
    work,
)

__all__ = ["Base"]
