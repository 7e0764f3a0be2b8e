from __future__ import annotations

import asyncio

import pytest

from app.automation.errors import ActionExecutionError, DuplicateWorkItemError
from app.automation.observability import CircuitOpenError, CircuitPolicy, CollaboratorMonitor
from app.services.chat_service import ChatDeliveryError


@pytest.mark.asyncio
async def test_monitor_opens_circuit_after_repeated_failures() -> None:
    monitor = CollaboratorMonitor(circuit_threshold=2, base_backoff_seconds=0.01, max_backoff_seconds=0.02)

    async def failing_call() -> None:
        raise ChatDeliveryError("Slack error 500")

    with pytest.raises(ChatDeliveryError):
        await monitor.track("chat", "slack_notify", failing_call)
    with pytest.raises(ChatDeliveryError):
        await monitor.track("chat", "slack_notify", failing_call)

    assert monitor.allow_call("chat") is False
    with pytest.raises(CircuitOpenError):
        await monitor.track("chat", "slack_notify", failing_call)

    snapshot = await monitor.snapshot()
    assert snapshot["chat"]["scope"] == "global"
    assert snapshot["chat"]["circuit"]["opened_count"] >= 1
    assert snapshot["chat"]["operations"]["slack_notify"]["failed"] == 2
    assert snapshot["chat"]["operations"]["slack_notify"]["skipped"] == 1

    await monitor.record_skip("work_items", "create_work_item", reason="duplicate", context={"dedupe_key": "k"})
    updated = await monitor.snapshot()
    assert updated["work_items"]["operations"]["create_work_item"]["skipped"] == 1


@pytest.mark.asyncio
async def test_monitor_recovers_after_cooldown_and_success() -> None:
    monitor = CollaboratorMonitor(circuit_threshold=1, base_backoff_seconds=0.01, max_backoff_seconds=0.02)

    async def failing_call() -> None:
        raise ConnectionError("boom")

    with pytest.raises(ConnectionError):
        await monitor.track("mail", "send_email", failing_call, tenant="org-a")

    assert monitor.allow_call("mail", "org-a") is False
    await asyncio.sleep(0.02)

    async def ok_call() -> str:
        return "queued"

    assert await monitor.track("mail", "send_email", ok_call, tenant="org-a", context={"recipe": "Receipt"}) == "queued"
    snapshot = await monitor.snapshot()
    assert snapshot["mail"]["operations"]["send_email"]["succeeded"] == 1
    assert snapshot["mail"]["operations"]["send_email"]["last_error"] is None
    assert snapshot["mail"]["circuit"]["failure_streak"] == 0
    assert snapshot["mail"]["tenants"] == {}


@pytest.mark.asyncio
async def test_circuits_are_tracked_per_collaborator() -> None:
    monitor = CollaboratorMonitor(circuit_threshold=1, base_backoff_seconds=60)

    async def failing_call() -> None:
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        await monitor.track("chat", "slack_notify", failing_call)

    assert monitor.allow_call("chat") is False
    assert monitor.allow_call("mail") is True


@pytest.mark.asyncio
async def test_rejections_are_counted_without_moving_the_circuit() -> None:
    monitor = CollaboratorMonitor(circuit_threshold=1, base_backoff_seconds=60)

    async def rejected_call() -> None:
        raise ActionExecutionError("invalid_recipient:not-an-address")

    async def duplicate_call() -> None:
        raise DuplicateWorkItemError("major-gift-don-1")

    for _ in range(3):
        with pytest.raises(ActionExecutionError):
            await monitor.track("mail", "send_email", rejected_call, tenant="org-a")
    with pytest.raises(DuplicateWorkItemError):
        await monitor.track("work_items", "create_work_item", duplicate_call, tenant="org-a")

    assert monitor.allow_call("mail", "org-a") is True
    assert monitor.allow_call("work_items", "org-a") is True
    snapshot = await monitor.snapshot()
    mail = snapshot["mail"]["operations"]["send_email"]
    assert mail["rejected"] == 3
    assert mail["failed"] == 0
    assert mail["last_error"] == "invalid_recipient:not-an-address"
    assert snapshot["work_items"]["operations"]["create_work_item"]["rejected"] == 1


@pytest.mark.asyncio
async def test_tenant_scoped_circuit_isolates_organizations() -> None:
    monitor = CollaboratorMonitor(circuit_threshold=1, base_backoff_seconds=60)

    async def failing_call() -> None:
        raise ConnectionError("db down")

    async def ok_call() -> str:
        return "ok"

    with pytest.raises(ConnectionError):
        await monitor.track("records", "update_field", failing_call, tenant="org-a")

    assert monitor.allow_call("records", "org-a") is False
    assert await monitor.track("records", "update_field", ok_call, tenant="org-b") == "ok"
    with pytest.raises(CircuitOpenError):
        await monitor.track("records", "update_field", ok_call, tenant="org-a")


@pytest.mark.asyncio
async def test_policy_override_can_make_a_collaborator_global() -> None:
    monitor = CollaboratorMonitor(
        circuit_threshold=1,
        base_backoff_seconds=60,
        policies={"mail": CircuitPolicy(scope="global", threshold=1, base_backoff_seconds=60)},
    )

    async def failing_call() -> None:
        raise ConnectionError("smtp relay down")

    with pytest.raises(ConnectionError):
        await monitor.track("mail", "send_email", failing_call, tenant="org-a")

    assert monitor.policy_for("mail").scope == "global"
    assert monitor.allow_call("mail", "org-b") is False
