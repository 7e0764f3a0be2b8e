"""User request/response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.schema.base import ORMModel


class UserCreate(BaseModel):
    """Payload for registering a new user and their organization."""
    email: EmailStr
    password: str = Field(min_length=8)
    display_name: str | None = None
    organization_name: str | None = Field(default=None, max_length=255)


class UserLogin(BaseModel):
    """Payload for user login requests."""
    email: EmailStr
    password: str


class UserRead(ORMModel):
    """User profile fields exposed in API responses."""
    id: UUID
    email: EmailStr
    display_name: str | None = None
    organization_id: UUID
    role: str
    created_at: datetime
