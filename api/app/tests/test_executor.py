"""Action executor behaviour with in-memory collaborators."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from app.automation.actions import parse_actions
from app.automation.errors import ActionExecutionError, DuplicateWorkItemError
from app.automation.executor import ActionContext, ActionExecutor, Collaborators, WorkItemDraft
from app.automation.observability import CollaboratorMonitor
from app.automation.recipes import Recipe, get_recipe
from app.services.chat_service import ChatDeliveryError

ORG_ID = uuid.uuid4()
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, **message: Any) -> str:
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


class FakeWorkItems:
    def __init__(self) -> None:
        self.items: dict[str, WorkItemDraft] = {}
        self.keys: dict[str, str] = {}
        self.race_on_create = False

    async def find_by_dedupe_key(self, *, organization_id: uuid.UUID, dedupe_key: str) -> str | None:
        return self.keys.get(dedupe_key)

    async def create(self, *, organization_id: uuid.UUID, draft: WorkItemDraft) -> str:
        if self.race_on_create and draft.dedupe_key:
            raise DuplicateWorkItemError(draft.dedupe_key)
        item_id = f"wi-{len(self.items) + 1}"
        self.items[item_id] = draft
        if draft.dedupe_key:
            self.keys[draft.dedupe_key] = item_id
        return item_id


class FakeChat:
    def __init__(self, *, fail: bool = False, outage: bool = False) -> None:
        self.fail = fail
        self.outage = outage
        self.posts: list[tuple[str, str]] = []

    async def post(self, *, channel: str, text: str) -> None:
        if self.fail:
            raise ActionExecutionError("slack_webhook_not_configured")
        if self.outage:
            raise ChatDeliveryError("Slack error 503")
        self.posts.append((channel, text))


class FakeTags:
    def __init__(self) -> None:
        self.tags: set[tuple[str, str, str]] = set()

    async def add(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool:
        key = (entity_type, entity_id, tag)
        added = key not in self.tags
        self.tags.add(key)
        return added

    async def remove(self, *, organization_id: uuid.UUID, entity_type: str, entity_id: str, tag: str) -> bool:
        key = (entity_type, entity_id, tag)
        if key in self.tags:
            self.tags.remove(key)
            return True
        return False


class FakeRecords:
    def __init__(self, *, rows: int = 1) -> None:
        self.rows = rows
        self.updates: list[tuple[str, str, dict[str, Any]]] = []

    async def update(self, *, organization_id: uuid.UUID, table: str, record_id: str, values: dict[str, Any]) -> int:
        self.updates.append((table, record_id, values))
        return self.rows


class FakeReviewers:
    async def assign(self, *, organization_id, application_id, reviewer_profile_id, role) -> str:
        return reviewer_profile_id or "auto-reviewer"


class FakePayments:
    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []

    async def create(self, **request: Any) -> str:
        self.requests.append(request)
        return f"pay-{len(self.requests)}"


class FakeWebhooks:
    def __init__(self, *, status_code: int = 202) -> None:
        self.status_code = status_code
        self.deliveries: list[tuple[str, dict[str, Any]]] = []

    async def deliver(self, *, organization_id: uuid.UUID, webhook_id: str, payload: dict[str, Any]) -> int:
        self.deliveries.append((webhook_id, payload))
        return self.status_code


class ExplodingMailer:
    async def send(self, **message: Any) -> str:
        raise RuntimeError("smtp exploded")


def _collaborators(**overrides: Any) -> Collaborators:
    defaults = dict(
        mailer=FakeMailer(),
        work_items=FakeWorkItems(),
        chat=FakeChat(),
        tags=FakeTags(),
        records=FakeRecords(),
        reviewers=FakeReviewers(),
        payments=FakePayments(),
        webhooks=FakeWebhooks(),
    )
    defaults.update(overrides)
    return Collaborators(**defaults)


def _context(**overrides: Any) -> ActionContext:
    values: dict[str, Any] = {
        "organization_id": ORG_ID,
        "organization": {"org_name": "Riverbend Foundation", "portal_url": "https://portal.example"},
        "event_id": "evt-1",
        "now": NOW,
    }
    values.update(overrides)
    return ActionContext(**values)


def _recipe(actions: list[dict[str, Any]], *, stop_on_error: bool | None = None) -> Recipe:
    return Recipe(
        name="Test Recipe",
        category="donations",
        trigger_events=["donation.created"],
        actions=parse_actions(actions),
        stop_on_error=stop_on_error,
    )


def _executor(collaborators: Collaborators) -> ActionExecutor:
    return ActionExecutor(collaborators, monitor=CollaboratorMonitor())


@pytest.mark.asyncio
async def test_major_gift_recipe_runs_all_actions_in_order():
    collaborators = _collaborators()
    recipe = get_recipe("Major Gift Alert ($1,000+)")
    payload = {"donation_id": "don-9", "donor_name": "Jane Doe", "amount_cents": 150000, "amount_dollars": "1500.00"}

    outcome = await _executor(collaborators).run(recipe, payload, context=_context())

    assert outcome.status == "completed"
    assert [result.action_type for result in outcome.results] == ["create_work_item", "slack_notify", "add_tag"]
    item = collaborators.work_items.items["wi-1"]
    assert item.title == "Major Gift Follow-up: Jane Doe"
    assert item.priority == "high"
    assert item.reference_id == "don-9"
    assert item.dedupe_key == "major-gift-don-9"
    assert collaborators.chat.posts == [("#development", "🎉 Major Gift Alert! Jane Doe donated $1500.00")]
    assert ("donations", "don-9", "major_gift") in collaborators.tags.tags


@pytest.mark.asyncio
async def test_dedupe_key_creates_one_work_item_across_two_runs():
    collaborators = _collaborators()
    executor = _executor(collaborators)
    recipe = _recipe(
        [{"type": "create_work_item", "title": "Triage {{application_id}}", "dedupe_key": "triage-{{application_id}}"}]
    )
    payload = {"application_id": "app-7"}

    first = await executor.run(recipe, payload, context=_context())
    second = await executor.run(recipe, payload, context=_context())

    assert len(collaborators.work_items.items) == 1
    assert first.results[0].details["work_item_id"] == "wi-1"
    assert second.status == "completed"
    assert second.results[0].skipped is True
    assert second.results[0].details == {
        "skipped": "duplicate",
        "work_item_id": "wi-1",
        "dedupe_key": "triage-app-7",
    }
    snapshot = await executor.monitor.snapshot()
    assert snapshot["work_items"]["operations"]["create_work_item"]["skipped"] == 1


@pytest.mark.asyncio
async def test_racing_duplicate_insert_is_reported_as_duplicate():
    work_items = FakeWorkItems()
    work_items.race_on_create = True
    recipe = _recipe([{"type": "create_work_item", "title": "t", "dedupe_key": "k-{{id}}"}])

    outcome = await _executor(_collaborators(work_items=work_items)).run(recipe, {"id": "1"}, context=_context())

    assert outcome.status == "completed"
    assert outcome.results[0].details["skipped"] == "duplicate"
    assert work_items.items == {}


@pytest.mark.asyncio
async def test_stop_on_error_aborts_remaining_actions():
    collaborators = _collaborators(chat=FakeChat(fail=True))
    recipe = _recipe(
        [
            {"type": "slack_notify", "channel": "#ops", "message_template": "hi"},
            {"type": "add_tag", "entity_type": "profiles", "entity_id_path": "profile_id", "tag": "vip"},
        ],
        stop_on_error=True,
    )

    outcome = await _executor(collaborators).run(recipe, {"profile_id": "p1"}, context=_context())

    assert outcome.status == "failed"
    assert outcome.actions_executed == 1
    assert outcome.error == "slack_webhook_not_configured"
    assert collaborators.tags.tags == set()


@pytest.mark.asyncio
async def test_unset_stop_on_error_continues_best_effort():
    collaborators = _collaborators(chat=FakeChat(fail=True))
    recipe = _recipe(
        [
            {"type": "slack_notify", "channel": "#ops", "message_template": "hi"},
            {"type": "add_tag", "entity_type": "profiles", "entity_id_path": "profile_id", "tag": "vip"},
        ]
    )

    outcome = await _executor(collaborators).run(recipe, {"profile_id": "p1"}, context=_context())

    assert outcome.status == "partial"
    assert outcome.actions_executed == 2
    assert outcome.actions_succeeded == 1
    assert outcome.actions_failed == 1
    assert outcome.error == "slack_notify: slack_webhook_not_configured"
    assert ("profiles", "p1", "vip") in collaborators.tags.tags


@pytest.mark.asyncio
async def test_send_email_fans_out_recipients_with_idempotency_keys():
    collaborators = _collaborators()
    recipe = _recipe(
        [
            {
                "type": "send_email",
                "to_path": "board_member_emails",
                "subject": "{{org_name}} board packet",
                "body_template": "Meeting on {{meeting_date}} at {{location}}",
                "data": {"location": "HQ"},
            }
        ]
    )
    payload = {"board_member_emails": ["a@example.org", "b@example.org"], "meeting_date": "2026-03-08"}

    outcome = await _executor(collaborators).run(recipe, payload, context=_context())

    assert outcome.status == "completed"
    sent = collaborators.mailer.sent
    assert [message["to"] for message in sent] == ["a@example.org", "b@example.org"]
    assert sent[0]["subject"] == "Riverbend Foundation board packet"
    assert sent[0]["body"] == "Meeting on 2026-03-08 at HQ"
    assert [message["idempotency_key"] for message in sent] == [
        "evt-1:Test Recipe:0:0",
        "evt-1:Test Recipe:0:1",
    ]
    assert outcome.results[0].details["message_ids"] == ["msg-1", "msg-2"]


@pytest.mark.asyncio
async def test_missing_recipient_fails_the_action():
    recipe = _recipe([{"type": "send_email", "to_path": "donor_email", "subject": "s", "body_template": "b"}])
    outcome = await _executor(_collaborators()).run(recipe, {}, context=_context())
    assert outcome.status == "partial"
    assert outcome.results[0].error == "missing_value:donor_email"


@pytest.mark.asyncio
async def test_template_error_policy_fails_the_action():
    recipe = _recipe([{"type": "slack_notify", "channel": "#ops", "message_template": "{{nope}}"}])
    outcome = await _executor(_collaborators()).run(recipe, {}, context=_context(missing="error"))
    assert outcome.results[0].success is False
    assert outcome.results[0].error == "unresolved placeholder: nope"


@pytest.mark.asyncio
async def test_unexpected_collaborator_exception_becomes_failed_result(caplog):
    recipe = _recipe([{"type": "send_email", "to_path": "to", "subject": "s", "body_template": "b"}])
    outcome = await _executor(_collaborators(mailer=ExplodingMailer())).run(
        recipe, {"to": "x@example.org"}, context=_context()
    )
    assert outcome.results[0].success is False
    assert outcome.results[0].error == "smtp exploded"
    assert "raised unexpectedly" in caplog.text


@pytest.mark.asyncio
async def test_update_and_payment_actions_delegate_with_resolved_values():
    collaborators = _collaborators()
    recipe = _recipe(
        [
            {"type": "update_status", "table": "grant_applications", "id_path": "application_id", "status_value": "awarded"},
            {"type": "update_field", "table": "member_organizations", "id_path": "member.id", "field": "status", "value": "lapsed"},
            {
                "type": "create_payment_request",
                "amount_cents_path": "first_disbursement_cents",
                "payer_email_path": "finance_email",
                "memo": "First disbursement for {{project_title}}",
                "due_days": 30,
            },
            {"type": "assign_reviewer", "application_id_path": "application_id", "auto_assign": True},
            {"type": "create_task", "title": "Call {{applicant_name}}", "due_days": 7, "assignee_role": "program_officer"},
        ]
    )
    payload = {
        "application_id": "app-1",
        "member": {"id": "mem-1"},
        "first_disbursement_cents": "250000",
        "finance_email": "finance@example.org",
        "project_title": "Literacy Lab",
        "applicant_name": "Ana",
    }

    outcome = await _executor(collaborators).run(recipe, payload, context=_context())

    assert outcome.status == "completed"
    assert collaborators.records.updates == [
        ("grant_applications", "app-1", {"status": "awarded"}),
        ("member_organizations", "mem-1", {"status": "lapsed"}),
    ]
    request = collaborators.payments.requests[0]
    assert request["amount_cents"] == 250000
    assert request["payer_email"] == "finance@example.org"
    assert request["description"] == "First disbursement for Literacy Lab"
    assert request["due_at"] == datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)
    assert outcome.results[3].details["reviewer_profile_id"] == "auto-reviewer"
    task = collaborators.work_items.items["wi-1"]
    assert task.item_type == "task"
    assert task.title == "Call Ana"
    assert task.assignee_role == "program_officer"
    assert task.due_at == datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_update_of_missing_record_fails():
    recipe = _recipe([{"type": "update_status", "table": "grant_applications", "id_path": "id", "status_value": "x"}])
    outcome = await _executor(_collaborators(records=FakeRecords(rows=0))).run(recipe, {"id": "a"}, context=_context())
    assert outcome.results[0].success is False
    assert outcome.results[0].error == "record_not_found:grant_applications:a"


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_collaborator():
    monitor = CollaboratorMonitor(circuit_threshold=1, base_backoff_seconds=60)
    chat = FakeChat(outage=True)
    executor = ActionExecutor(_collaborators(chat=chat), monitor=monitor)
    recipe = _recipe([{"type": "slack_notify", "channel": "#ops", "message_template": "hi"}])

    await executor.run(recipe, {}, context=_context())
    chat.outage = False
    outcome = await executor.run(recipe, {}, context=_context())

    assert outcome.results[0].success is False
    assert "circuit open" in outcome.results[0].error
    assert chat.posts == []


class ValidatingMailer(FakeMailer):
    async def send(self, **message: Any) -> str:
        if "@" not in message["to"]:
            raise ActionExecutionError(f"invalid_recipient:{message['to']}")
        return await super().send(**message)


class FlakyMailer(FakeMailer):
    def __init__(self, down_for: set[uuid.UUID]) -> None:
        super().__init__()
        self.down_for = down_for

    async def send(self, **message: Any) -> str:
        if message["organization_id"] in self.down_for:
            raise ConnectionError("outbox database unreachable")
        return await super().send(**message)


@pytest.mark.asyncio
async def test_rejected_recipients_do_not_open_the_mail_circuit():
    monitor = CollaboratorMonitor(circuit_threshold=3, base_backoff_seconds=60)
    mailer = ValidatingMailer()
    executor = ActionExecutor(_collaborators(mailer=mailer), monitor=monitor)
    recipe = _recipe([{"type": "send_email", "to_path": "to", "subject": "s", "body_template": "b"}])
    org_a, org_b = uuid.uuid4(), uuid.uuid4()

    for _ in range(3):
        bad = await executor.run(recipe, {"to": "not-an-address"}, context=_context(organization_id=org_a))
        assert bad.results[0].error == "invalid_recipient:not-an-address"

    other_tenant = await executor.run(recipe, {"to": "donor@example.org"}, context=_context(organization_id=org_b))
    same_tenant = await executor.run(recipe, {"to": "donor@example.org"}, context=_context(organization_id=org_a))

    assert other_tenant.status == "completed"
    assert same_tenant.status == "completed"
    assert len(mailer.sent) == 2
    snapshot = await monitor.snapshot()
    operations = snapshot["mail"]["operations"]["send_email"]
    assert operations["rejected"] == 3
    assert operations["failed"] == 0
    assert snapshot["mail"]["circuit"]["opened_count"] == 0


@pytest.mark.asyncio
async def test_mail_outage_in_one_tenant_leaves_other_tenants_open():
    monitor = CollaboratorMonitor(circuit_threshold=2, base_backoff_seconds=60)
    org_a, org_b = uuid.uuid4(), uuid.uuid4()
    mailer = FlakyMailer(down_for={org_a})
    executor = ActionExecutor(_collaborators(mailer=mailer), monitor=monitor)
    recipe = _recipe([{"type": "send_email", "to_path": "to", "subject": "s", "body_template": "b"}])
    payload = {"to": "donor@example.org"}

    for _ in range(2):
        await executor.run(recipe, payload, context=_context(organization_id=org_a))
    mailer.down_for.clear()

    blocked = await executor.run(recipe, payload, context=_context(organization_id=org_a))
    allowed = await executor.run(recipe, payload, context=_context(organization_id=org_b))

    assert "circuit open" in blocked.results[0].error
    assert allowed.status == "completed"
    snapshot = await monitor.snapshot()
    assert snapshot["mail"]["scope"] == "tenant"
    assert list(snapshot["mail"]["tenants"]) == [str(org_a)]
    assert snapshot["mail"]["circuit"]["open_tenants"] == 1


@pytest.mark.asyncio
async def test_dedupe_key_with_missing_placeholder_fails_instead_of_merging_events():
    collaborators = _collaborators()
    executor = _executor(collaborators)
    recipe = get_recipe("Major Gift Alert ($1,000+)")

    first = await executor.run(
        recipe, {"donor_name": "Jane Doe", "amount_cents": 150000}, context=_context(event_id="evt-1")
    )
    second = await executor.run(
        recipe, {"donor_name": "Sam Roe", "amount_cents": 250000}, context=_context(event_id="evt-2")
    )

    for outcome in (first, second):
        work_item = outcome.results[0]
        assert work_item.action_type == "create_work_item"
        assert work_item.success is False
        assert work_item.error == "dedupe_key_unresolved:donation_id"
    assert collaborators.work_items.items == {}
    assert collaborators.work_items.keys == {}


@pytest.mark.asyncio
async def test_dedupe_key_with_empty_value_is_unresolved():
    collaborators = _collaborators()
    recipe = _recipe([{"type": "create_work_item", "title": "t", "dedupe_key": "triage-{{application_id}}"}])

    outcome = await _executor(collaborators).run(recipe, {"application_id": ""}, context=_context())

    assert outcome.results[0].error == "dedupe_key_unresolved:application_id"
    assert collaborators.work_items.items == {}


@pytest.mark.asyncio
async def test_trigger_webhook_renders_template_or_forwards_payload():
    webhooks = FakeWebhooks()
    executor = _executor(_collaborators(webhooks=webhooks))
    recipe = _recipe(
        [
            {
                "type": "trigger_webhook",
                "webhook_id": "hook-1",
                "payload_template": {"summary": "{{donor_name}} gave ${{amount_dollars}}", "tags": ["{{org_name}}", 7]},
            },
            {"type": "trigger_webhook", "webhook_id": "hook-2"},
        ]
    )
    payload = {"donor_name": "Jane Doe", "amount_dollars": "40.00"}

    outcome = await executor.run(recipe, payload, context=_context())

    assert outcome.status == "completed"
    assert webhooks.deliveries == [
        ("hook-1", {"summary": "Jane Doe gave $40.00", "tags": ["Riverbend Foundation", 7]}),
        ("hook-2", payload),
    ]
    assert outcome.results[0].details == {"webhook_id": "hook-1", "status": 202}
