"""Action kinds an automation recipe can run.

Invariants:
- Each action is decoded into exactly one variant keyed by ``type``.
- Fields ending in ``_path`` are dot paths into the event payload, never literals.
- Template fields may contain ``{{placeholder}}`` tokens resolved at execution time.
"""

from __future__ import annotations

from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

WorkItemPriority = Literal["low", "medium", "high", "urgent"]


class _ActionBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SendEmailAction(_ActionBase):
    """Queue an email to the address found at ``to_path``."""

    type: Literal["send_email"] = "send_email"
    to_path: str
    subject: str
    body_template: str
    template_id: str | None = None
    data: dict[str, Any] | None = None


class CreateWorkItemAction(_ActionBase):
    """Create a staff work item, optionally deduplicated by ``dedupe_key``."""

    type: Literal["create_work_item"] = "create_work_item"
    title: str
    description: str | None = None
    priority: WorkItemPriority = "medium"
    reference_type: str | None = None
    reference_id_path: str | None = None
    dedupe_key: str | None = None


class CreateTaskAction(_ActionBase):
    """Create a task assigned to a profile or a role."""

    type: Literal["create_task"] = "create_task"
    title: str
    description: str | None = None
    due_days: int | None = Field(default=None, ge=0)
    assignee_path: str | None = None
    assignee_role: str | None = None


class SlackNotifyAction(_ActionBase):
    type: Literal["slack_notify"] = "slack_notify"
    channel: str
    message_template: str


class AddTagAction(_ActionBase):
    type: Literal["add_tag"] = "add_tag"
    entity_type: str
    entity_id_path: str
    tag: str


class RemoveTagAction(_ActionBase):
    type: Literal["remove_tag"] = "remove_tag"
    entity_type: str
    entity_id_path: str
    tag: str


class UpdateFieldAction(_ActionBase):
    """Set one column on a record; the value is literal or read from ``value_path``."""

    type: Literal["update_field"] = "update_field"
    table: str
    id_path: str
    field: str
    value: Any = None
    value_path: str | None = None


class UpdateStatusAction(_ActionBase):
    type: Literal["update_status"] = "update_status"
    table: str
    id_path: str
    status_field: str = "status"
    status_value: str


class AssignReviewerAction(_ActionBase):
    """Assign a reviewer to a grant application."""

    type: Literal["assign_reviewer"] = "assign_reviewer"
    application_id_path: str
    reviewer_profile_id: str | None = None
    auto_assign: bool = False
    role: str = "reviewer"

    @model_validator(mode="after")
    def _require_reviewer_source(self) -> "AssignReviewerAction":
        if not self.reviewer_profile_id and not self.auto_assign:
            raise ValueError("assign_reviewer needs reviewer_profile_id or auto_assign")
        return self


class CreatePaymentRequestAction(_ActionBase):
    type: Literal["create_payment_request"] = "create_payment_request"
    amount_cents_path: str
    payer_email_path: str | None = None
    memo: str | None = None
    due_days: int = Field(default=14, ge=0)


class TriggerWebhookAction(_ActionBase):
    """POST a JSON body to a registered outbound webhook.

    Strings anywhere inside ``payload_template`` are templates; without a
    template the event payload is sent as is.
    """

    type: Literal["trigger_webhook"] = "trigger_webhook"
    webhook_id: str
    payload_template: dict[str, Any] | None = None


AutomationAction = Annotated[
    Union[
        SendEmailAction,
        CreateWorkItemAction,
        CreateTaskAction,
        SlackNotifyAction,
        AddTagAction,
        RemoveTagAction,
        UpdateFieldAction,
        UpdateStatusAction,
        AssignReviewerAction,
        CreatePaymentRequestAction,
        TriggerWebhookAction,
    ],
    Field(discriminator="type"),
]

_action_adapter = TypeAdapter(AutomationAction)
_action_list_adapter = TypeAdapter(list[AutomationAction])

ACTION_KINDS: tuple[str, ...] = (
    "send_email",
    "create_work_item",
    "create_task",
    "slack_notify",
    "add_tag",
    "remove_tag",
    "update_field",
    "update_status",
    "assign_reviewer",
    "create_payment_request",
    "trigger_webhook",
)


def parse_action(data: dict[str, Any]) -> AutomationAction:
    """Decode a raw action mapping into its variant."""
    return _action_adapter.validate_python(data)


def parse_actions(data: list[dict[str, Any]]) -> list[AutomationAction]:
    """Decode a stored action list, preserving order."""
    return _action_list_adapter.validate_python(data)


def dump_actions(actions: list[AutomationAction]) -> list[dict[str, Any]]:
    """Serialize actions for JSON storage."""
    return [action.model_dump(mode="json", exclude_none=True) for action in actions]


def _nested_strings(prefix: str, value: Any) -> Iterator[tuple[str, str]]:
    if isinstance(value, str):
        yield prefix, value
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from _nested_strings(f"{prefix}.{key}", item)
    elif isinstance(value, list):
        for position, item in enumerate(value):
            yield from _nested_strings(f"{prefix}.{position}", item)


def template_fields(action: AutomationAction) -> dict[str, str]:
    """Return the template-bearing fields of an action keyed by field name."""
    fields: dict[str, str | None]
    match action:
        case SendEmailAction():
            fields = {"subject": action.subject, "body_template": action.body_template}
        case CreateWorkItemAction():
            fields = {
                "title": action.title,
                "description": action.description,
                "dedupe_key": action.dedupe_key,
            }
        case CreateTaskAction():
            fields = {"title": action.title, "description": action.description}
        case SlackNotifyAction():
            fields = {"message_template": action.message_template}
        case AddTagAction() | RemoveTagAction():
            fields = {"tag": action.tag}
        case CreatePaymentRequestAction():
            fields = {"memo": action.memo}
        case TriggerWebhookAction():
            fields = dict(_nested_strings("payload_template", action.payload_template))
        case UpdateFieldAction() | UpdateStatusAction() | AssignReviewerAction():
            fields = {}
    return {name: value for name, value in fields.items() if value}


def path_fields(action: AutomationAction) -> dict[str, str]:
    """Return the payload path references of an action keyed by field name."""
    return {
        name: value
        for name, value in action.model_dump(exclude_none=True).items()
        if name.endswith("_path") and isinstance(value, str)
    }
