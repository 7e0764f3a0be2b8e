from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from rq_scheduler import Scheduler

from app.core.config import settings
from app.jobs.compliance import emit_compliance_tick_job
from app.jobs.maintenance import prune_automation_history_job
from app.jobs.schedules import run_scheduled_automation_job
from app.services.task_queue import task_queue

logger = logging.getLogger("app.jobs.schedule_registry")

DAY_SECONDS = 86400


def _queue_for(name: str) -> str:
    fallback = task_queue.queue_names[0] if task_queue.queue_names else "default"
    return name if name in task_queue.queue_names else fallback


def _schedule_entries() -> list[dict]:
    entries: list[dict] = []
    if settings.compliance_tick_enabled:
        entries.append(
            {
                "id": "automations:compliance_tick_daily",
                "func": emit_compliance_tick_job,
                "interval": DAY_SECONDS,
                "repeat": None,
                "queue_name": _queue_for("automations"),
            }
        )
    if settings.event_log_retention_days > 0:
        entries.append(
            {
                "id": "maintenance:prune_automation_history",
                "func": prune_automation_history_job,
                "interval": DAY_SECONDS,
                "repeat": None,
                "queue_name": _queue_for("maintenance"),
            }
        )
    return entries


def ensure_schedules() -> None:
    """Idempotently register periodic jobs with rq-scheduler."""
    if settings.environment.lower() == "test":
        return
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    for entry in _schedule_entries():
        if entry["id"] in scheduler:
            continue
        scheduler.schedule(
            scheduled_time=datetime.now(timezone.utc),
            func=entry["func"],
            interval=entry["interval"],
            repeat=entry["repeat"],
            id=entry["id"],
            queue_name=entry["queue_name"],
            result_ttl=int(timedelta(hours=1).total_seconds()),
        )
        logger.info("Scheduled job %s every %ss on queue %s", entry["id"], entry["interval"], entry["queue_name"])


def _scheduler() -> Scheduler | None:
    if settings.environment.lower() == "test" or not task_queue.connection:
        return None
    return Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])


def automation_schedule_job_id(schedule_id: Any) -> str:
    return f"automation_schedule:{schedule_id}"


def cancel_automation_schedule(schedule_id: Any, *, scheduler: Scheduler | None = None) -> bool:
    """Remove a schedule's job from rq-scheduler; False when nothing was registered."""
    scheduler = scheduler or _scheduler()
    job_id = automation_schedule_job_id(schedule_id)
    if scheduler is None or job_id not in scheduler:
        return False
    scheduler.cancel(job_id)
    logger.info("Cancelled scheduled job %s", job_id)
    return True


def register_automation_schedule(schedule: Any, *, scheduler: Scheduler | None = None) -> bool:
    """Replace the rq-scheduler job for one automation schedule.

    Inactive schedules and spent one-shot schedules are only cancelled.
    """
    scheduler = scheduler or _scheduler()
    if scheduler is None:
        return False
    cancel_automation_schedule(schedule.id, scheduler=scheduler)
    if not schedule.is_active or schedule.next_run_at is None:
        return False

    job_id = automation_schedule_job_id(schedule.id)
    kwargs = {"schedule_id": str(schedule.id)}
    queue_name = _queue_for("automations")
    if schedule.schedule_type == "cron":
        scheduler.cron(
            schedule.cron_expression,
            func=run_scheduled_automation_job,
            kwargs=kwargs,
            id=job_id,
            queue_name=queue_name,
            use_local_timezone=False,
        )
    else:
        interval = schedule.interval_minutes * 60 if schedule.schedule_type == "interval" else None
        scheduler.schedule(
            scheduled_time=schedule.next_run_at,
            func=run_scheduled_automation_job,
            kwargs=kwargs,
            interval=interval,
            repeat=None,
            id=job_id,
            queue_name=queue_name,
            result_ttl=int(timedelta(hours=1).total_seconds()),
        )
    logger.info("Scheduled automation %s (%s) on queue %s", job_id, schedule.schedule_type, queue_name)
    return True


def scheduler_available() -> bool:
    return _scheduler() is not None
