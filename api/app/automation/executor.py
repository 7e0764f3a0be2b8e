"""Run a recipe's actions against an event payload.

Invariants:
- Actions run strictly in order; one action finishes before the next starts.
- ``stop_on_error`` aborts the remaining actions after the first failure;
  otherwise every action is attempted and failures are collected.
- A work item carrying a dedupe key is created at most once per organization.
- Collaborator exceptions never escape ``run``; they become failed results.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Literal, Mapping, Protocol, Sequence

from app.automation.actions import (
    AddTagAction,
    AssignReviewerAction,
    AutomationAction,
    CreatePaymentRequestAction,
    CreateTaskAction,
    CreateWorkItemAction,
    RemoveTagAction,
    SendEmailAction,
    SlackNotifyAction,
    TriggerWebhookAction,
    UpdateFieldAction,
    UpdateStatusAction,
)
from app.automation.errors import ActionExecutionError, AutomationError, DuplicateWorkItemError
from app.automation.observability import CircuitOpenError, CollaboratorMonitor, collaborator_monitor
from app.automation.templating import (
    MISSING,
    MissingPolicy,
    lookup,
    render_object,
    render_template,
    resolve_path,
    template_placeholders,
)

logger = logging.getLogger("app.automation.executor")

RunStatus = Literal["completed", "partial", "failed", "skipped"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActionResult:
    """Outcome of one action."""

    action_type: str
    success: bool
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    skipped: bool = False

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action_type": self.action_type,
            "success": self.success,
            "details": self.details,
        }
        if self.error:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class RecipeRunResult:
    recipe_name: str
    status: RunStatus
    results: list[ActionResult] = field(default_factory=list)
    error: str | None = None

    @property
    def actions_executed(self) -> int:
        return len(self.results)

    @property
    def actions_succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def actions_failed(self) -> int:
        return sum(1 for result in self.results if not result.success)


@dataclass(frozen=True)
class WorkItemDraft:
    item_type: str
    title: str
    description: str | None = None
    priority: str = "medium"
    reference_type: str | None = None
    reference_id: str | None = None
    dedupe_key: str | None = None
    due_at: datetime | None = None
    assignee_profile_id: str | None = None
    assignee_role: str | None = None


class Mailer(Protocol):
    async def send(
        self,
        *,
        organization_id: uuid.UUID,
        to: str,
        subject: str,
        body: str,
        template_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> str: ...


class WorkItemStore(Protocol):
    async def find_by_dedupe_key(self, *, organization_id: uuid.UUID, dedupe_key: str) -> str | None: ...

    async def create(self, *, organization_id: uuid.UUID, draft: WorkItemDraft) -> str: ...


class ChatNotifier(Protocol):
    async def post(self, *, channel: str, text: str) -> None: ...


class TagStore(Protocol):
    async def add(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool: ...

    async def remove(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool: ...


class RecordUpdater(Protocol):
    async def update(
        self, *, organization_id: uuid.UUID, table: str, record_id: str, values: dict[str, Any]
    ) -> int: ...


class ReviewerAssigner(Protocol):
    async def assign(
        self,
        *,
        organization_id: uuid.UUID,
        application_id: str,
        reviewer_profile_id: str | None,
        role: str,
    ) -> str: ...


class PaymentRequestStore(Protocol):
    async def create(
        self,
        *,
        organization_id: uuid.UUID,
        amount_cents: int,
        payer_email: str | None,
        description: str | None,
        due_at: datetime,
    ) -> str: ...


class WebhookSender(Protocol):
    async def deliver(
        self, *, organization_id: uuid.UUID, webhook_id: str, payload: dict[str, Any]
    ) -> int: ...


@dataclass
class Collaborators:
    """Side-effect providers handed to the executor."""

    mailer: Mailer
    work_items: WorkItemStore
    chat: ChatNotifier
    tags: TagStore
    records: RecordUpdater
    reviewers: ReviewerAssigner
    payments: PaymentRequestStore
    webhooks: WebhookSender


@dataclass
class ActionContext:
    """Per-run values that are not part of the event payload."""

    organization_id: uuid.UUID
    organization: Mapping[str, Any] = field(default_factory=dict)
    missing: MissingPolicy = "blank"
    event_id: str | None = None
    now: datetime = field(default_factory=_utcnow)


class _Runnable(Protocol):
    name: str
    actions: Sequence[AutomationAction]

    @property
    def halts_on_error(self) -> bool: ...


def _require(payload: Mapping[str, Any], path: str) -> Any:
    value = resolve_path(payload, path)
    if value is MISSING or value is None or value == "":
        raise ActionExecutionError(f"missing_value:{path}")
    return value


def _optional(payload: Mapping[str, Any], path: str | None) -> Any:
    if not path:
        return None
    value = resolve_path(payload, path)
    return None if value is MISSING else value


def _optional_str(payload: Mapping[str, Any], path: str | None) -> str | None:
    value = _optional(payload, path)
    return str(value) if value not in (None, "") else None


def _recipients(value: Any) -> list[str]:
    """Accept a single address, a list of addresses, or a comma-separated string."""
    if isinstance(value, (list, tuple)):
        candidates = [str(item) for item in value]
    else:
        candidates = str(value).split(",")
    recipients = [item.strip() for item in candidates if item and item.strip()]
    if not recipients:
        raise ActionExecutionError("recipient_missing")
    return recipients


class ActionExecutor:
    """Execute recipe actions through explicitly supplied collaborators."""

    def __init__(self, collaborators: Collaborators, *, monitor: CollaboratorMonitor | None = None) -> None:
        self.collaborators = collaborators
        self.monitor = monitor or collaborator_monitor

    async def run(
        self,
        recipe: _Runnable,
        payload: Mapping[str, Any],
        *,
        context: ActionContext,
    ) -> RecipeRunResult:
        """Run every action of the recipe in order and summarize the outcome."""
        results: list[ActionResult] = []
        halted_error: str | None = None
        for index, action in enumerate(recipe.actions):
            result = await self.execute_action(
                action, payload, context=context, recipe_name=recipe.name, index=index
            )
            results.append(result)
            if result.success:
                continue
            if recipe.halts_on_error:
                halted_error = result.error
                logger.error(
                    "Recipe '%s' stopped at action %d (%s): %s",
                    recipe.name,
                    index,
                    result.action_type,
                    result.error,
                )
                break
            logger.warning(
                "Recipe '%s' action %d (%s) failed, continuing: %s",
                recipe.name,
                index,
                result.action_type,
                result.error,
            )

        failures = [result for result in results if not result.success]
        if halted_error is not None:
            status: RunStatus = "failed"
            error = halted_error
        elif failures:
            status = "partial"
            error = "; ".join(f"{result.action_type}: {result.error}" for result in failures)
        else:
            status = "completed"
            error = None
        return RecipeRunResult(recipe_name=recipe.name, status=status, results=results, error=error)

    async def execute_action(
        self,
        action: AutomationAction,
        payload: Mapping[str, Any],
        *,
        context: ActionContext,
        recipe_name: str = "",
        index: int = 0,
    ) -> ActionResult:
        """Execute one action, converting every failure into a failed result."""
        try:
            return await self._dispatch(action, payload, context, recipe_name, index)
        except (AutomationError, CircuitOpenError) as exc:
            return ActionResult(action_type=action.type, success=False, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Action %s in recipe '%s' raised unexpectedly", action.type, recipe_name)
            return ActionResult(action_type=action.type, success=False, error=str(exc) or type(exc).__name__)

    def _render(
        self,
        template: str | None,
        payload: Mapping[str, Any],
        context: ActionContext,
        *extra: Mapping[str, Any],
    ) -> str | None:
        if template is None:
            return None
        return render_template(
            template,
            payload,
            fallbacks=(*extra, context.organization),
            missing=context.missing,
        )

    def _dedupe_key(
        self,
        template: str | None,
        payload: Mapping[str, Any],
        context: ActionContext,
    ) -> str | None:
        """Render a dedupe key strictly; a partial key would merge unrelated events."""
        if not template:
            return None
        for path in sorted(template_placeholders(template)):
            value = lookup(path, payload, (context.organization,))
            if value is MISSING or value is None or value == "":
                raise ActionExecutionError(f"dedupe_key_unresolved:{path}")
        return render_template(template, payload, fallbacks=(context.organization,), missing="error") or None

    async def _track(
        self,
        collaborator: str,
        action: AutomationAction,
        context: ActionContext,
        call: Callable[[], Awaitable[Any]],
        recipe_name: str,
    ) -> Any:
        return await self.monitor.track(
            collaborator,
            action.type,
            call,
            tenant=str(context.organization_id),
            context={"recipe": recipe_name, "organization_id": str(context.organization_id)},
        )

    async def _dispatch(
        self,
        action: AutomationAction,
        payload: Mapping[str, Any],
        context: ActionContext,
        recipe_name: str,
        index: int,
    ) -> ActionResult:
        collab = self.collaborators
        org_id = context.organization_id

        match action:
            case SendEmailAction():
                recipients = _recipients(_require(payload, action.to_path))
                literals = action.data or {}
                subject = self._render(action.subject, payload, context, literals) or ""
                body = self._render(action.body_template, payload, context, literals) or ""
                message_ids: list[str] = []
                for position, to in enumerate(recipients):
                    idempotency_key = (
                        f"{context.event_id}:{recipe_name}:{index}:{position}" if context.event_id else None
                    )
                    message_id = await self._track(
                        "mail",
                        action,
                        context,
                        lambda: collab.mailer.send(
                            organization_id=org_id,
                            to=to,
                            subject=subject,
                            body=body,
                            template_id=action.template_id,
                            idempotency_key=idempotency_key,
                        ),
                        recipe_name,
                    )
                    message_ids.append(message_id)
                return ActionResult(
                    action.type, True, {"to": recipients, "subject": subject, "message_ids": message_ids}
                )

            case CreateWorkItemAction():
                draft = WorkItemDraft(
                    item_type="automation",
                    title=self._render(action.title, payload, context) or "",
                    description=self._render(action.description, payload, context),
                    priority=action.priority,
                    reference_type=action.reference_type,
                    reference_id=_optional_str(payload, action.reference_id_path),
                    dedupe_key=self._dedupe_key(action.dedupe_key, payload, context),
                )
                return await self._create_work_item(action, draft, context, recipe_name)

            case CreateTaskAction():
                due_at = context.now + timedelta(days=action.due_days) if action.due_days is not None else None
                draft = WorkItemDraft(
                    item_type="task",
                    title=self._render(action.title, payload, context) or "",
                    description=self._render(action.description, payload, context),
                    due_at=due_at,
                    assignee_profile_id=_optional_str(payload, action.assignee_path),
                    assignee_role=action.assignee_role,
                )
                return await self._create_work_item(action, draft, context, recipe_name)

            case SlackNotifyAction():
                text = self._render(action.message_template, payload, context) or ""
                await self._track(
                    "chat",
                    action,
                    context,
                    lambda: collab.chat.post(channel=action.channel, text=text),
                    recipe_name,
                )
                return ActionResult(action.type, True, {"channel": action.channel})

            case AddTagAction() | RemoveTagAction():
                entity_id = str(_require(payload, action.entity_id_path))
                tag = self._render(action.tag, payload, context) or ""
                if not tag:
                    raise ActionExecutionError("tag_empty")
                store_call = collab.tags.add if isinstance(action, AddTagAction) else collab.tags.remove
                changed = await self._track(
                    "tags",
                    action,
                    context,
                    lambda: store_call(
                        organization_id=org_id,
                        entity_type=action.entity_type,
                        entity_id=entity_id,
                        tag=tag,
                    ),
                    recipe_name,
                )
                return ActionResult(
                    action.type,
                    True,
                    {"entity_type": action.entity_type, "entity_id": entity_id, "tag": tag, "changed": changed},
                )

            case UpdateFieldAction():
                record_id = str(_require(payload, action.id_path))
                value = _require(payload, action.value_path) if action.value_path else action.value
                return await self._update_record(
                    action, context, recipe_name, table=action.table, record_id=record_id, values={action.field: value}
                )

            case UpdateStatusAction():
                record_id = str(_require(payload, action.id_path))
                return await self._update_record(
                    action,
                    context,
                    recipe_name,
                    table=action.table,
                    record_id=record_id,
                    values={action.status_field: action.status_value},
                )

            case AssignReviewerAction():
                application_id = str(_require(payload, action.application_id_path))
                reviewer = None if action.auto_assign else action.reviewer_profile_id
                assigned = await self._track(
                    "reviewers",
                    action,
                    context,
                    lambda: collab.reviewers.assign(
                        organization_id=org_id,
                        application_id=application_id,
                        reviewer_profile_id=reviewer,
                        role=action.role,
                    ),
                    recipe_name,
                )
                return ActionResult(
                    action.type, True, {"application_id": application_id, "reviewer_profile_id": assigned}
                )

            case CreatePaymentRequestAction():
                raw_amount = _require(payload, action.amount_cents_path)
                try:
                    amount_cents = int(raw_amount)
                except (TypeError, ValueError) as exc:
                    raise ActionExecutionError(f"invalid_amount:{action.amount_cents_path}") from exc
                payer_email = _optional_str(payload, action.payer_email_path)
                memo = self._render(action.memo, payload, context)
                request_id = await self._track(
                    "payments",
                    action,
                    context,
                    lambda: collab.payments.create(
                        organization_id=org_id,
                        amount_cents=amount_cents,
                        payer_email=payer_email,
                        description=memo,
                        due_at=context.now + timedelta(days=action.due_days),
                    ),
                    recipe_name,
                )
                return ActionResult(
                    action.type, True, {"payment_request_id": request_id, "amount_cents": amount_cents}
                )

            case TriggerWebhookAction():
                if action.payload_template is None:
                    body = dict(payload)
                else:
                    body = render_object(
                        action.payload_template,
                        payload,
                        fallbacks=(context.organization,),
                        missing=context.missing,
                    )
                status_code = await self._track(
                    "webhooks",
                    action,
                    context,
                    lambda: collab.webhooks.deliver(
                        organization_id=org_id, webhook_id=action.webhook_id, payload=body
                    ),
                    recipe_name,
                )
                return ActionResult(action.type, True, {"webhook_id": action.webhook_id, "status": status_code})

        raise ActionExecutionError(f"unsupported_action:{getattr(action, 'type', action)}")

    async def _create_work_item(
        self,
        action: CreateWorkItemAction | CreateTaskAction,
        draft: WorkItemDraft,
        context: ActionContext,
        recipe_name: str,
    ) -> ActionResult:
        store = self.collaborators.work_items
        org_id = context.organization_id
        if draft.dedupe_key:
            existing = await store.find_by_dedupe_key(organization_id=org_id, dedupe_key=draft.dedupe_key)
            if existing is not None:
                await self.monitor.record_skip(
                    "work_items",
                    action.type,
                    reason="duplicate",
                    context={"recipe": recipe_name, "dedupe_key": draft.dedupe_key},
                )
                return ActionResult(
                    action.type,
                    True,
                    {"skipped": "duplicate", "work_item_id": existing, "dedupe_key": draft.dedupe_key},
                    skipped=True,
                )
        try:
            work_item_id = await self._track(
                "work_items",
                action,
                context,
                lambda: store.create(organization_id=org_id, draft=draft),
                recipe_name,
            )
        except DuplicateWorkItemError:
            return ActionResult(
                action.type, True, {"skipped": "duplicate", "dedupe_key": draft.dedupe_key}, skipped=True
            )
        details: dict[str, Any] = {"work_item_id": work_item_id, "title": draft.title}
        if draft.dedupe_key:
            details["dedupe_key"] = draft.dedupe_key
        return ActionResult(action.type, True, details)

    async def _update_record(
        self,
        action: UpdateFieldAction | UpdateStatusAction,
        context: ActionContext,
        recipe_name: str,
        *,
        table: str,
        record_id: str,
        values: dict[str, Any],
    ) -> ActionResult:
        updated = await self._track(
            "records",
            action,
            context,
            lambda: self.collaborators.records.update(
                organization_id=context.organization_id, table=table, record_id=record_id, values=values
            ),
            recipe_name,
        )
        if not updated:
            raise ActionExecutionError(f"record_not_found:{table}:{record_id}")
        return ActionResult(action.type, True, {"table": table, "record_id": record_id, "values": values})
