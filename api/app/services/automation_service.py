"""Automation rule storage, recipe installation and event dispatch.

Invariants:
- Every query is scoped to the caller's organization.
- Rule names are unique per organization; installing a recipe twice is a no-op.
- An event with a source_id is logged and dispatched once per source.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.actions import dump_actions
from app.automation.events import AutomationEvent, enrich_payload
from app.automation.matcher import evaluate_filters, match_recipes
from app.automation.recipes import Recipe, foundation_recipes, get_recipe, recipes_by_category
from app.core.context import RequestContext
from app.db.upsert import insert_ignore
from app.jobs.automations import run_automation_rule_job
from app.models.automation import AutomationEventLog, AutomationRule, AutomationRun
from app.schema.automation import AutomationRuleCreate, AutomationRuleUpdate
from app.services import automation_engine
from app.services.task_queue import task_queue

logger = logging.getLogger("app.services.automation_service")


async def list_rules(
    session: AsyncSession, ctx: RequestContext, *, is_active: bool | None = None
) -> list[AutomationRule]:
    """List automation rules for an organization, oldest first."""
    stmt = select(AutomationRule).where(AutomationRule.organization_id == ctx.organization_id)
    if is_active is not None:
        stmt = stmt.where(AutomationRule.is_active.is_(is_active))
    result = await session.execute(stmt.order_by(AutomationRule.created_at.asc(), AutomationRule.name.asc()))
    return list(result.scalars().all())


async def get_rule(session: AsyncSession, ctx: RequestContext, *, rule_id: uuid.UUID) -> AutomationRule:
    """Fetch a single automation rule by ID."""
    result = await session.execute(
        select(AutomationRule).where(
            AutomationRule.id == rule_id, AutomationRule.organization_id == ctx.organization_id
        )
    )
    rule = result.scalar_one_or_none()
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


async def _name_taken(session: AsyncSession, ctx: RequestContext, name: str, *, exclude: uuid.UUID | None = None) -> bool:
    stmt = select(AutomationRule.id).where(
        AutomationRule.organization_id == ctx.organization_id, AutomationRule.name == name
    )
    if exclude:
        stmt = stmt.where(AutomationRule.id != exclude)
    result = await session.execute(stmt)
    return result.first() is not None


async def create_rule(session: AsyncSession, ctx: RequestContext, *, payload: AutomationRuleCreate) -> AutomationRule:
    """Create a new automation rule."""
    name = payload.name.strip()
    if await _name_taken(session, ctx, name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Automation rule name already exists")
    rule = AutomationRule(
        organization_id=ctx.organization_id,
        name=name,
        description=payload.description,
        category=payload.category,
        trigger_events=list(payload.trigger_events),
        filters=payload.filters,
        actions=dump_actions(payload.actions),
        is_active=payload.is_active,
        stop_on_error=payload.stop_on_error,
        created_by_id=ctx.user_id,
    )
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    return rule


async def update_rule(
    session: AsyncSession, ctx: RequestContext, *, rule: AutomationRule, payload: AutomationRuleUpdate
) -> AutomationRule:
    """Update an automation rule."""
    fields = payload.model_fields_set
    if "name" in fields and payload.name is not None:
        name = payload.name.strip()
        if await _name_taken(session, ctx, name, exclude=rule.id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Automation rule name already exists")
        rule.name = name
    if "description" in fields:
        rule.description = payload.description
    if "category" in fields and payload.category is not None:
        rule.category = payload.category
    if "trigger_events" in fields and payload.trigger_events is not None:
        rule.trigger_events = list(payload.trigger_events)
    if "filters" in fields:
        rule.filters = payload.filters
    if "actions" in fields and payload.actions is not None:
        rule.actions = dump_actions(payload.actions)
    if "is_active" in fields and payload.is_active is not None:
        rule.is_active = payload.is_active
    if "stop_on_error" in fields:
        rule.stop_on_error = payload.stop_on_error
    await session.commit()
    await session.refresh(rule)
    return rule


async def delete_rule(session: AsyncSession, *, rule: AutomationRule) -> None:
    """Delete an automation rule and its run history."""
    await session.delete(rule)
    await session.commit()


async def list_runs(
    session: AsyncSession, ctx: RequestContext, *, rule_id: uuid.UUID, limit: int = 50
) -> list[AutomationRun]:
    """Return a rule's most recent runs, newest first."""
    await get_rule(session, ctx, rule_id=rule_id)
    result = await session.execute(
        select(AutomationRun)
        .where(AutomationRun.rule_id == rule_id, AutomationRun.organization_id == ctx.organization_id)
        .order_by(AutomationRun.started_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


def _rule_from_recipe(ctx: RequestContext, recipe: Recipe) -> AutomationRule:
    return AutomationRule(
        organization_id=ctx.organization_id,
        name=recipe.name,
        description=recipe.description,
        category=recipe.category,
        recipe_key=recipe.name,
        trigger_events=list(recipe.trigger_events),
        filters=recipe.filters,
        actions=dump_actions(recipe.actions),
        is_active=recipe.is_active,
        stop_on_error=recipe.stop_on_error,
        created_by_id=ctx.user_id,
    )


async def install_recipes(
    session: AsyncSession,
    ctx: RequestContext,
    *,
    recipe_name: str | None = None,
    category: str | None = None,
    install_all: bool = False,
) -> tuple[list[str], list[str]]:
    """Copy catalog recipes into the organization's rules.

    Returns (installed, skipped); recipes whose name already exists are skipped.
    """
    if recipe_name:
        recipe = get_recipe(recipe_name)
        if recipe is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipe not found")
        selected = [recipe]
    elif category:
        selected = recipes_by_category(category)
    elif install_all:
        selected = foundation_recipes()
    else:
        selected = []

    result = await session.execute(
        select(AutomationRule.name).where(AutomationRule.organization_id == ctx.organization_id)
    )
    existing = set(result.scalars().all())
    installed: list[str] = []
    skipped: list[str] = []
    for recipe in selected:
        if recipe.name in existing:
            skipped.append(recipe.name)
            continue
        session.add(_rule_from_recipe(ctx, recipe))
        existing.add(recipe.name)
        installed.append(recipe.name)
    await session.commit()
    logger.info(
        "Installed %d recipe(s) for organization %s (%d already present)",
        len(installed),
        ctx.organization_id,
        len(skipped),
    )
    return installed, skipped


async def list_events(session: AsyncSession, ctx: RequestContext, *, limit: int = 50) -> list[AutomationEventLog]:
    result = await session.execute(
        select(AutomationEventLog)
        .where(AutomationEventLog.organization_id == ctx.organization_id)
        .order_by(AutomationEventLog.received_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def _dispatch_rule(
    session: AsyncSession, *, rule: AutomationRule, event_id: uuid.UUID, payload: dict[str, Any]
) -> dict[str, Any]:
    """Hand one matched rule to the worker queue, or run it inline when the queue is off."""

    async def _fallback() -> dict[str, Any]:
        run = await automation_engine.execute_rule(session, rule=rule, payload=payload, event_id=event_id)
        return automation_engine.run_summary(run)

    return await task_queue.enqueue_or_run(
        run_automation_rule_job,
        fallback=_fallback,
        queue_name="automations",
        timeout_seconds=60,
        wait=False,
        description=f"automation:{rule.id}",
        rule_id=str(rule.id),
        event_id=str(event_id),
    )


async def log_event(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    event_type: str,
    payload: dict[str, Any],
    source_type: str,
    source_id: str | None,
) -> tuple[AutomationEventLog, bool]:
    """Insert an event log row unless the source already delivered it.

    Returns the row and whether it was a redelivery. Concurrent deliveries of
    the same source race on ``uq_automation_event_source``; the loser gets the
    winner's row back instead of an IntegrityError.
    """
    values = {
        "organization_id": organization_id,
        "event_type": event_type,
        "payload": payload,
        "source_type": source_type,
        "source_id": source_id,
    }
    event_id = await insert_ignore(
        session,
        AutomationEventLog,
        values,
        conflict_columns=("organization_id", "source_type", "source_id"),
    )
    if event_id is None:
        existing = await session.execute(
            select(AutomationEventLog).where(
                AutomationEventLog.organization_id == organization_id,
                AutomationEventLog.source_type == source_type,
                AutomationEventLog.source_id == source_id,
            )
        )
        return existing.scalar_one(), True
    return await session.get(AutomationEventLog, event_id), False


async def emit_event(session: AsyncSession, ctx: RequestContext, event: AutomationEvent) -> dict[str, Any]:
    """Log an event, match it against the organization's active rules and dispatch the matches."""
    payload = enrich_payload(event.type, event.payload, now=event.occurred_at)
    log_entry, duplicate = await log_event(
        session,
        organization_id=ctx.organization_id,
        event_type=event.type,
        payload=payload,
        source_type=event.source_type,
        source_id=event.source_id,
    )
    if duplicate:
        await session.commit()
        logger.info("Ignoring redelivered %s event %s:%s", event.type, event.source_type, event.source_id)
        return {
            "event_id": log_entry.id,
            "duplicate": True,
            "rules_matched": log_entry.rules_matched,
            "rules_executed": log_entry.rules_executed,
            "runs": [],
        }

    rules = await list_rules(session, ctx, is_active=True)
    matched = match_recipes(rules, event.type, payload)
    log_entry.rules_matched = len(matched)
    await session.commit()

    runs: list[dict[str, Any]] = []
    for rule in matched:
        runs.append(await _dispatch_rule(session, rule=rule, event_id=log_entry.id, payload=payload))

    log_entry.rules_executed = sum(1 for run in runs if run.get("status") != "skipped")
    await session.commit()
    logger.info(
        "Event %s for organization %s matched %d rule(s), dispatched %d",
        event.type,
        ctx.organization_id,
        log_entry.rules_matched,
        log_entry.rules_executed,
    )
    return {
        "event_id": log_entry.id,
        "duplicate": False,
        "rules_matched": log_entry.rules_matched,
        "rules_executed": log_entry.rules_executed,
        "runs": runs,
    }


async def dry_run_rule(
    session: AsyncSession,
    ctx: RequestContext,
    *,
    rule: AutomationRule,
    payload: dict[str, Any],
    event_type: str | None = None,
) -> dict[str, Any]:
    """Fire a rule against a sample payload, bypassing triggers and the active flag."""
    event_type = event_type or (rule.trigger_events[0] if rule.trigger_events else "manual.test")
    sample = enrich_payload(event_type, payload)
    sample["_test"] = True
    if ctx.user_id:
        sample["_triggered_by"] = str(ctx.user_id)
    filters_passed = evaluate_filters(rule.filters, sample, recipe_name=rule.name)
    run = await automation_engine.execute_rule(session, rule=rule, payload=sample, allow_inactive=True)
    return {**automation_engine.run_summary(run), "filters_passed": filters_passed, "event_type": event_type}
