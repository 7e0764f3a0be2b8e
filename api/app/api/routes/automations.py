"""Automation rule endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_request_context, require_automation_admin
from app.core.context import RequestContext
from app.schema.automation import (
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    AutomationRunRead,
    AutomationTestRequest,
)
from app.services import automation_service

router = APIRouter()


@router.get("", response_model=list[AutomationRuleRead])
async def list_automation_rules(
    is_active: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[AutomationRuleRead]:
    """List automation rules for the caller's organization."""
    rules = await automation_service.list_rules(session, ctx, is_active=is_active)
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.post("", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    payload: AutomationRuleCreate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> AutomationRuleRead:
    rule = await automation_service.create_rule(session, ctx, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.get("/{rule_id}", response_model=AutomationRuleRead)
async def read_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> AutomationRuleRead:
    rule = await automation_service.get_rule(session, ctx, rule_id=rule_id)
    return AutomationRuleRead.model_validate(rule)


@router.patch("/{rule_id}", response_model=AutomationRuleRead)
async def update_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationRuleUpdate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> AutomationRuleRead:
    rule = await automation_service.get_rule(session, ctx, rule_id=rule_id)
    rule = await automation_service.update_rule(session, ctx, rule=rule, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> None:
    rule = await automation_service.get_rule(session, ctx, rule_id=rule_id)
    await automation_service.delete_rule(session, rule=rule)


@router.post("/{rule_id}/test")
async def test_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationTestRequest,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> dict:
    """Fire a rule against a sample payload; the payload is marked ``_test``."""
    rule = await automation_service.get_rule(session, ctx, rule_id=rule_id)
    return await automation_service.dry_run_rule(
        session, ctx, rule=rule, payload=payload.payload, event_type=payload.event_type
    )


@router.get("/{rule_id}/runs", response_model=list[AutomationRunRead])
async def list_automation_runs(
    rule_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[AutomationRunRead]:
    runs = await automation_service.list_runs(session, ctx, rule_id=rule_id, limit=limit)
    return [AutomationRunRead.model_validate(run) for run in runs]
