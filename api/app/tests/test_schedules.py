"""Scheduled rules: API, firing and rq-scheduler registration."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.jobs import schedule_registry
from app.models.automation import AutomationEventLog, AutomationRun, AutomationSchedule
from app.models.work import WorkItem
from app.services import schedule_service
from app.tests.utils import register_and_login

FIRED_AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

REPORT_RULE = {
    "name": "Weekly board report",
    "category": "board",
    "trigger_events": ["schedule.fired"],
    "actions": [{"type": "create_task", "title": "Prepare report ({{schedule_name}})", "assignee_role": "admin"}],
}


async def _count(session, model, *conditions) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar_one()


async def _rule(client, auth) -> str:
    res = await client.post("/api/automations", json=REPORT_RULE, headers=auth.headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


@pytest.mark.asyncio
async def test_schedule_lifecycle(client):
    auth = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, auth)

    created = await client.post(
        "/api/schedules",
        json={"name": "Mondays 9am", "rule_id": rule_id, "schedule_type": "cron", "cron_expression": "0 9 * * 1"},
        headers=auth.headers,
    )
    assert created.status_code == 201, created.text
    schedule = created.json()
    assert schedule["is_active"] is True
    assert schedule["next_run_at"] is not None
    assert schedule["run_count"] == 0

    listed = (await client.get("/api/schedules", headers=auth.headers)).json()
    assert [item["name"] for item in listed] == ["Mondays 9am"]

    paused = await client.patch(
        f"/api/schedules/{schedule['id']}", json={"is_active": False}, headers=auth.headers
    )
    assert paused.json()["is_active"] is False

    deleted = await client.delete(f"/api/schedules/{schedule['id']}", headers=auth.headers)
    assert deleted.status_code == 204
    assert (await client.get("/api/schedules", headers=auth.headers)).json() == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"schedule_type": "cron", "cron_expression": "every monday"},
        {"schedule_type": "cron", "cron_expression": "0 9 * *"},
        {"schedule_type": "cron"},
        {"schedule_type": "interval"},
        {"schedule_type": "interval", "interval_minutes": 0},
        {"schedule_type": "once"},
        {"schedule_type": "hourly"},
    ],
)
async def test_schedule_validation(client, body):
    auth = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, auth)
    res = await client.post("/api/schedules", json={"name": "Bad", "rule_id": rule_id, **body}, headers=auth.headers)
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_schedule_cannot_target_another_organizations_rule(client):
    owner = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, owner)
    other = await register_and_login(client, prefix="other")

    res = await client.post(
        "/api/schedules",
        json={"name": "Steal", "rule_id": rule_id, "schedule_type": "interval", "interval_minutes": 5},
        headers=other.headers,
    )
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_timed_firing_runs_the_rule_once_per_minute(client, session):
    auth = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, auth)
    created = await client.post(
        "/api/schedules",
        json={"name": "Hourly", "rule_id": rule_id, "schedule_type": "interval", "interval_minutes": 60},
        headers=auth.headers,
    )
    schedule_id = uuid.UUID(created.json()["id"])

    first = await schedule_service.run_schedule(session, schedule_id=schedule_id, fired_at=FIRED_AT)
    redelivered = await schedule_service.run_schedule(session, schedule_id=schedule_id, fired_at=FIRED_AT)

    assert first["status"] == "completed"
    assert redelivered == {"schedule_id": str(schedule_id), "status": "skipped", "error": "already_fired"}
    task = (await session.execute(select(WorkItem))).scalar_one()
    assert task.title == "Prepare report (Hourly)"
    assert await _count(session, AutomationRun) == 1
    event = (await session.execute(select(AutomationEventLog))).scalar_one()
    assert event.event_type == "schedule.fired"
    assert event.source_id == f"schedule:{schedule_id}:2026-03-02T09:00"
    assert event.payload["trigger"] == "scheduled"

    schedule = await session.get(AutomationSchedule, schedule_id)
    await session.refresh(schedule)
    assert schedule.run_count == 1
    assert schedule.last_error is None
    assert schedule.next_run_at.replace(tzinfo=timezone.utc) == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_one_shot_schedule_deactivates_after_firing(client, session):
    auth = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, auth)
    created = await client.post(
        "/api/schedules",
        json={"name": "Launch", "rule_id": rule_id, "schedule_type": "once", "run_at": FIRED_AT.isoformat()},
        headers=auth.headers,
    )
    schedule_id = uuid.UUID(created.json()["id"])

    await schedule_service.run_schedule(session, schedule_id=schedule_id, fired_at=FIRED_AT)
    later = await schedule_service.run_schedule(
        session, schedule_id=schedule_id, fired_at=datetime(2026, 3, 3, tzinfo=timezone.utc)
    )

    assert later["status"] == "skipped"
    assert later["error"] == "schedule_inactive"
    schedule = await session.get(AutomationSchedule, schedule_id)
    await session.refresh(schedule)
    assert schedule.is_active is False
    assert schedule.next_run_at is None
    assert await _count(session, WorkItem) == 1


@pytest.mark.asyncio
async def test_manual_run_route_fires_without_touching_timing(client, session):
    auth = await register_and_login(client, prefix="sched")
    rule_id = await _rule(client, auth)
    created = (
        await client.post(
            "/api/schedules",
            json={"name": "Daily", "rule_id": rule_id, "schedule_type": "cron", "cron_expression": "30 6 * * *"},
            headers=auth.headers,
        )
    ).json()

    first = await client.post(f"/api/schedules/{created['id']}/run", headers=auth.headers)
    second = await client.post(f"/api/schedules/{created['id']}/run", headers=auth.headers)

    assert first.json()["status"] == "completed"
    assert second.json()["status"] == "completed"
    assert await _count(session, WorkItem) == 2
    refreshed = (await client.get("/api/schedules", headers=auth.headers)).json()[0]
    assert refreshed["run_count"] == 2
    assert refreshed["next_run_at"] == created["next_run_at"]


def test_cron_next_run_is_computed_in_utc():
    schedule = SimpleNamespace(schedule_type="cron", cron_expression="0 9 * * *", run_count=0)
    now = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert schedule_service.next_run_after(schedule, now) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeScheduler:
    def __init__(self) -> None:
        self.jobs: dict[str, tuple[str, dict]] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self.jobs

    def cancel(self, job_id: str) -> None:
        self.jobs.pop(job_id)

    def cron(self, cron_string: str, **kwargs) -> None:
        self.jobs[kwargs["id"]] = ("cron", {"cron_string": cron_string, **kwargs})

    def schedule(self, **kwargs) -> None:
        self.jobs[kwargs["id"]] = ("schedule", kwargs)


def _schedule(**overrides) -> SimpleNamespace:
    values = {
        "id": uuid.uuid4(),
        "schedule_type": "interval",
        "cron_expression": None,
        "interval_minutes": 15,
        "is_active": True,
        "next_run_at": FIRED_AT,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_registry_uses_cron_for_cron_schedules():
    scheduler = FakeScheduler()
    schedule = _schedule(schedule_type="cron", cron_expression="0 9 * * 1", interval_minutes=None)

    assert schedule_registry.register_automation_schedule(schedule, scheduler=scheduler) is True

    kind, job = scheduler.jobs[f"automation_schedule:{schedule.id}"]
    assert kind == "cron"
    assert job["cron_string"] == "0 9 * * 1"
    assert job["kwargs"] == {"schedule_id": str(schedule.id)}
    assert job["use_local_timezone"] is False


def test_registry_repeats_interval_schedules_and_replaces_old_jobs():
    scheduler = FakeScheduler()
    schedule = _schedule()
    schedule_registry.register_automation_schedule(schedule, scheduler=scheduler)
    schedule.interval_minutes = 30
    schedule_registry.register_automation_schedule(schedule, scheduler=scheduler)

    kind, job = scheduler.jobs[f"automation_schedule:{schedule.id}"]
    assert kind == "schedule"
    assert job["interval"] == 1800
    assert job["scheduled_time"] == FIRED_AT
    assert len(scheduler.jobs) == 1


def test_registry_runs_one_shot_schedules_once_and_drops_inactive_ones():
    scheduler = FakeScheduler()
    once = _schedule(schedule_type="once", interval_minutes=None)
    schedule_registry.register_automation_schedule(once, scheduler=scheduler)
    assert scheduler.jobs[f"automation_schedule:{once.id}"][1]["interval"] is None

    once.is_active = False
    assert schedule_registry.register_automation_schedule(once, scheduler=scheduler) is False
    assert scheduler.jobs == {}


def test_registry_is_inert_in_tests():
    assert schedule_registry.scheduler_available() is False
    assert schedule_registry.register_automation_schedule(_schedule()) is False
