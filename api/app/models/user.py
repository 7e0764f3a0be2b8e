"""Organization and user models; every automation record is scoped to an organization."""

from __future__ import annotations

import typing
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")

USER_ROLES = ("owner", "admin", "finance", "staff")

if typing.TYPE_CHECKING:  # pragma: no cover
    from app.models.automation import AutomationRule


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Organization(Base):
    """Tenant record; ``links`` feeds organization context into templates."""
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    links: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    users: Mapped[list["User"]] = relationship(back_populates="organization", cascade="all, delete-orphan")
    automation_rules: Mapped[list["AutomationRule"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan"
    )

    def template_context(self) -> dict[str, str]:
        """Values available to recipe templates when the payload lacks them."""
        context = {key: str(value) for key, value in (self.links or {}).items() if value}
        context["org_name"] = self.name
        return context


class User(Base):
    """Staff account belonging to one organization."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="staff")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    organization: Mapped[Organization] = relationship(back_populates="users")
