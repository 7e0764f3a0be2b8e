"""Automation rule, recipe, event and run schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.automation.actions import AutomationAction
from app.automation.events import EVENT_NAME_RE, EventSource
from app.automation.recipes import RecipeCategory
from app.schema.base import ORMModel


def _check_trigger_events(value: list[str]) -> list[str]:
    if not value:
        raise ValueError("trigger_events must be non-empty")
    for event_name in value:
        if not EVENT_NAME_RE.match(event_name):
            raise ValueError(f"trigger event '{event_name}' must look like entity.action")
    return value


class AutomationRuleCreate(BaseModel):
    """Payload for creating an automation rule."""
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    category: RecipeCategory
    trigger_events: list[str]
    filters: dict[str, Any] | None = None
    actions: list[AutomationAction] = Field(min_length=1)
    is_active: bool = True
    stop_on_error: bool | None = None

    @field_validator("trigger_events")
    @classmethod
    def _validate_trigger_events(cls, value: list[str]) -> list[str]:
        return _check_trigger_events(value)


class AutomationRuleUpdate(BaseModel):
    """Payload for updating an automation rule."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    category: RecipeCategory | None = None
    trigger_events: list[str] | None = None
    filters: dict[str, Any] | None = None
    actions: list[AutomationAction] | None = None
    is_active: bool | None = None
    stop_on_error: bool | None = None

    @field_validator("trigger_events")
    @classmethod
    def _validate_trigger_events(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else _check_trigger_events(value)

    @field_validator("actions")
    @classmethod
    def _validate_actions(cls, value: list[AutomationAction] | None) -> list[AutomationAction] | None:
        if value is not None and not value:
            raise ValueError("actions must be non-empty")
        return value


class AutomationRuleRead(ORMModel):
    """Automation rule representation."""
    id: UUID
    name: str
    description: str | None = None
    category: str
    recipe_key: str | None = None
    trigger_events: list[str]
    filters: dict[str, Any] | None = None
    actions: list[dict[str, Any]]
    is_active: bool
    stop_on_error: bool | None = None
    last_run_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class AutomationRunRead(ORMModel):
    """Recorded execution of one rule."""
    id: UUID
    rule_id: UUID
    event_id: UUID | None = None
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    actions_executed: int
    actions_succeeded: int
    actions_failed: int
    results: list[dict[str, Any]]
    error: str | None = None


class AutomationTestRequest(BaseModel):
    """Sample payload for a dry-fire of a rule."""
    event_type: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class RecipeRead(BaseModel):
    """Catalog recipe as exposed to the recipe browser."""
    name: str
    description: str
    category: str
    trigger_events: list[str]
    filters: dict[str, Any] | None = None
    actions: list[dict[str, Any]]
    is_active: bool
    stop_on_error: bool | None = None


class RecipeInstallRequest(BaseModel):
    """Install one recipe by name, every recipe in a category, or the whole pack."""
    recipe_name: str | None = None
    category: RecipeCategory | None = None
    install_all: bool = False

    @model_validator(mode="after")
    def _require_target(self) -> "RecipeInstallRequest":
        if not (self.recipe_name or self.category or self.install_all):
            raise ValueError("recipe_name, category or install_all is required")
        return self


class RecipeInstallResponse(BaseModel):
    installed: list[str]
    skipped: list[str]


class EventCreate(BaseModel):
    """Incoming domain event."""
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    source_type: EventSource = "api"
    source_id: str | None = Field(default=None, max_length=255)
    occurred_at: datetime | None = None

    @field_validator("type")
    @classmethod
    def _validate_type(cls, value: str) -> str:
        if not EVENT_NAME_RE.match(value):
            raise ValueError(f"event type '{value}' must be dot-namespaced like entity.action")
        return value


class EventLogRead(ORMModel):
    id: UUID
    event_type: str
    payload: dict[str, Any]
    source_type: str
    source_id: str | None = None
    rules_matched: int
    rules_executed: int
    received_at: datetime


class EventDispatchResponse(BaseModel):
    """Result of emitting one event."""
    event_id: UUID
    duplicate: bool = False
    rules_matched: int
    rules_executed: int
    runs: list[dict[str, Any]] = Field(default_factory=list)


class WorkItemRead(ORMModel):
    id: UUID
    item_type: str
    title: str
    description: str | None = None
    priority: str
    status: str
    reference_type: str | None = None
    reference_id: str | None = None
    dedupe_key: str | None = None
    due_at: datetime | None = None
    assignee_profile_id: str | None = None
    assignee_role: str | None = None
    created_at: datetime
