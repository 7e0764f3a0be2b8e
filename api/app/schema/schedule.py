"""Scheduled automation schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from crontab import CronTab
from pydantic import BaseModel, Field, field_validator, model_validator

from app.schema.base import ORMModel

ScheduleType = Literal["cron", "interval", "once"]


def _check_cron(value: str | None) -> str | None:
    if value is None:
        return None
    value = " ".join(value.split())
    if len(value.split(" ")) != 5:
        raise ValueError("cron_expression must have five fields: minute hour day month weekday")
    try:
        CronTab(value)
    except ValueError as exc:
        raise ValueError(f"invalid cron_expression: {exc}") from exc
    return value


class AutomationScheduleCreate(BaseModel):
    """Payload for scheduling a rule."""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    rule_id: UUID
    schedule_type: ScheduleType
    cron_expression: str | None = None
    interval_minutes: int | None = Field(default=None, ge=1)
    run_at: datetime | None = None
    is_active: bool = True

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str | None) -> str | None:
        return _check_cron(value)

    @model_validator(mode="after")
    def _require_timing(self) -> "AutomationScheduleCreate":
        required = {"cron": "cron_expression", "interval": "interval_minutes", "once": "run_at"}[self.schedule_type]
        if getattr(self, required) is None:
            raise ValueError(f"{self.schedule_type} schedules need {required}")
        return self


class AutomationScheduleUpdate(BaseModel):
    """Payload for updating a schedule; the schedule type is fixed at creation."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    cron_expression: str | None = None
    interval_minutes: int | None = Field(default=None, ge=1)
    run_at: datetime | None = None
    is_active: bool | None = None

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str | None) -> str | None:
        return _check_cron(value)


class AutomationScheduleRead(ORMModel):
    id: UUID
    rule_id: UUID
    name: str
    description: str | None = None
    schedule_type: str
    cron_expression: str | None = None
    interval_minutes: int | None = None
    run_at: datetime | None = None
    is_active: bool
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    run_count: int
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
