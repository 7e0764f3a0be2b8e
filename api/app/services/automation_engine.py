"""Execute one stored automation rule against one event payload.

Invariants:
- Every execution records an AutomationRun, including skipped and failed ones.
- last_error captures a short failure summary for UI surfaces and is cleared on success.
- Stored rule definitions are re-validated before execution.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.actions import parse_actions
from app.automation.executor import ActionContext, ActionExecutor, Collaborators
from app.automation.recipes import Recipe
from app.core.config import settings
from app.models.automation import AutomationEventLog, AutomationRule, AutomationRun
from app.models.user import Organization
from app.services.chat_service import SlackNotifier
from app.services.mail_service import OutboxMailer
from app.services.payment_service import PaymentRequestStore
from app.services.record_service import RecordUpdater
from app.services.reviewer_service import ReviewerPool
from app.services.tag_service import EntityTagStore
from app.services.webhook_service import WebhookDispatcher
from app.services.work_item_service import WorkItemRepository

logger = logging.getLogger("app.services.automation_engine")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_error(value: str | None, limit: int = 500) -> str | None:
    if not value:
        return None
    return value[:limit]


def build_collaborators(session: AsyncSession) -> Collaborators:
    """Database-backed collaborators sharing the caller's session."""
    return Collaborators(
        mailer=OutboxMailer(session),
        work_items=WorkItemRepository(session),
        chat=SlackNotifier(),
        tags=EntityTagStore(session),
        records=RecordUpdater(session),
        reviewers=ReviewerPool(session),
        payments=PaymentRequestStore(session),
        webhooks=WebhookDispatcher(session),
    )


def rule_to_recipe(rule: AutomationRule) -> Recipe:
    """Rebuild a validated recipe from a stored rule."""
    return Recipe(
        name=rule.name,
        description=rule.description or "",
        trigger_events=list(rule.trigger_events or []),
        filters=rule.filters,
        actions=parse_actions(list(rule.actions or [])),
        is_active=rule.is_active,
        stop_on_error=rule.stop_on_error,
        category=rule.category,
    )


def run_summary(run: AutomationRun) -> dict[str, Any]:
    return {
        "run_id": str(run.id),
        "rule_id": str(run.rule_id),
        "status": run.status,
        "actions_executed": run.actions_executed,
        "actions_succeeded": run.actions_succeeded,
        "actions_failed": run.actions_failed,
        "error": run.error,
    }


async def execute_rule(
    session: AsyncSession,
    *,
    rule: AutomationRule,
    payload: dict[str, Any],
    event_id: uuid.UUID | None = None,
    allow_inactive: bool = False,
    collaborators: Collaborators | None = None,
) -> AutomationRun:
    """Run a rule's actions and record the outcome."""
    started_at = _utcnow()
    clock = time.monotonic()
    run = AutomationRun(
        id=uuid.uuid4(),
        organization_id=rule.organization_id,
        rule_id=rule.id,
        event_id=event_id,
        started_at=started_at,
        status="skipped",
        results=[],
    )

    if not allow_inactive and not rule.is_active:
        run.error = "rule_inactive"
    else:
        try:
            recipe = rule_to_recipe(rule)
        except ValidationError as exc:
            logger.error("Automation rule %s has an invalid definition: %s", rule.id, exc)
            run.status = "failed"
            run.error = "invalid_rule_definition"
        else:
            organization = await session.get(Organization, rule.organization_id)
            context = ActionContext(
                organization_id=rule.organization_id,
                organization=organization.template_context() if organization else {},
                missing=settings.automation_template_missing,
                event_id=str(event_id) if event_id else None,
                now=started_at,
            )
            executor = ActionExecutor(collaborators or build_collaborators(session))
            outcome = await executor.run(recipe, payload, context=context)
            run.status = outcome.status
            run.error = outcome.error
            run.actions_executed = outcome.actions_executed
            run.actions_succeeded = outcome.actions_succeeded
            run.actions_failed = outcome.actions_failed
            run.results = [result.as_dict() for result in outcome.results]

    run.completed_at = _utcnow()
    run.duration_ms = int((time.monotonic() - clock) * 1000)
    rule.last_run_at = started_at
    rule.last_error = _truncate_error(run.error) if run.status in {"failed", "partial"} else None
    session.add(run)
    await session.commit()
    logger.info(
        "Automation rule '%s' (%s) finished %s: %d/%d actions succeeded",
        rule.name,
        rule.id,
        run.status,
        run.actions_succeeded,
        run.actions_executed,
    )
    return run


async def execute_rule_by_id(
    session: AsyncSession,
    *,
    rule_id: uuid.UUID,
    event_id: uuid.UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Execute a rule by ID for worker-driven runs; the payload defaults to the logged event's."""
    if not isinstance(rule_id, uuid.UUID):
        rule_id = uuid.UUID(str(rule_id))
    rule = await session.get(AutomationRule, rule_id)
    if not rule:
        return {"rule_id": str(rule_id), "status": "failed", "error": "rule_not_found"}
    if payload is None:
        event = await session.get(AutomationEventLog, event_id) if event_id else None
        if not event or event.organization_id != rule.organization_id:
            return {"rule_id": str(rule_id), "status": "failed", "error": "event_not_found"}
        payload = dict(event.payload or {})
    run = await execute_rule(session, rule=rule, payload=payload, event_id=event_id)
    return run_summary(run)
