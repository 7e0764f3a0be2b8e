"""Outbound webhook endpoint schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, Field

from app.schema.base import ORMModel


class WebhookCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    url: AnyHttpUrl


class WebhookRead(ORMModel):
    id: UUID
    name: str
    url: str
    is_active: bool
    last_status: int | None = None
    last_delivered_at: datetime | None = None
    created_at: datetime


class WebhookCreated(WebhookRead):
    """Returned once at registration; the secret is not readable afterwards."""
    secret: str
