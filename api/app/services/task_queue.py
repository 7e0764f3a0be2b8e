"""RQ task queue wrapper with inline fallback for local/test runs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.registry import DeferredJobRegistry, FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.worker import Worker
from rq_scheduler import Scheduler

from app.core.config import settings
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.task_queue")

# Rule runs get a few chances with backoff when a worker dies mid-job.
DEFAULT_RETRY = Retry(max=3, interval=[5, 15, 30])


def _maybe_async(value: Any) -> Any:
    """Normalize callables/coroutines into an awaitable result."""
    if asyncio.iscoroutine(value):
        return value
    if callable(value):
        return value()
    return value


class TaskQueue:
    """Thin wrapper around RQ that can fall back to inline execution."""

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = None
        self._enabled = False
        self._bootstrap()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def connection(self) -> Redis | None:
        return self._connection

    def _bootstrap(self) -> None:
        """Initialize Redis connectivity unless disabled for tests."""
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment")
            return
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except (RedisError, OSError) as exc:  # pragma: no cover - network/redis specific
            logger.warning(
                "Redis unavailable at %s; running jobs inline: %s",
                redact_secrets(settings.redis_url),
                redact_secrets(str(exc)),
            )
            self._connection = None
            self._enabled = False
            return
        self._connection = connection
        self._enabled = True
        logger.info("Task queue ready (queues: %s)", ", ".join(self.queue_names))

    def get_queue(self, queue_name: str | None = None) -> Queue:
        """Return a configured queue instance for enqueuing jobs."""
        if not self._connection:
            raise RuntimeError("Queue connection not initialized")
        target = queue_name or (self.queue_names[0] if self.queue_names else "default")
        if target not in self.queue_names:
            target = self.queue_names[0]
        return Queue(target, connection=self._connection)

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        fallback: Callable[[], Any] | None = None,
        queue_name: str | None = None,
        timeout_seconds: int = 60,
        retry: Retry | None = DEFAULT_RETRY,
        wait: bool = True,
        description: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Enqueue a job; fall back to inline execution when the queue is unavailable.

        With ``wait`` the job's return value is awaited; otherwise a ``queued``
        marker with the job id is returned right away.
        """

        async def _run_fallback() -> Any:
            target = fallback or (lambda: func(**kwargs))
            result = _maybe_async(target)
            if asyncio.iscoroutine(result):
                return await result
            return result

        if not self._enabled or not self._connection:
            return await _run_fallback()

        def _enqueue() -> Any:
            queue = self.get_queue(queue_name)
            job = queue.enqueue(
                func,
                kwargs=kwargs,
                job_timeout=timeout_seconds,
                description=description,
                retry=retry,
            )
            if not wait:
                return {"status": "queued", "job_id": job.id, "queue": queue.name}
            result = job.latest_result(timeout=timeout_seconds)
            if result is None or result.type != result.Type.SUCCESSFUL:
                raise RuntimeError(f"job {job.id} did not complete successfully")
            return result.return_value

        try:
            return await asyncio.to_thread(_enqueue)
        except (RedisError, RuntimeError) as exc:  # pragma: no cover - network/redis specific
            logger.warning("Falling back to inline execution after queue failure: %s", redact_secrets(str(exc)))
            return await _run_fallback()

    def snapshot(self) -> dict[str, Any]:
        """Return a diagnostic snapshot of queue, worker, and scheduler state."""
        redis_url = redact_secrets(settings.redis_url)
        if not self._connection:
            return {
                "status": "offline",
                "queues": [],
                "workers": [],
                "error": "queue connection not initialized",
                "redis_url": redis_url,
            }

        queues: list[dict[str, Any]] = []
        for name in self.queue_names:
            queue = Queue(name, connection=self._connection)
            queues.append(
                {
                    "name": name,
                    "size": queue.count,
                    "deferred": len(DeferredJobRegistry(queue=queue)),
                    "scheduled": len(ScheduledJobRegistry(queue=queue)),
                    "started": len(StartedJobRegistry(queue=queue)),
                    "failed": len(FailedJobRegistry(queue=queue)),
                }
            )

        workers: list[dict[str, Any]] = []
        try:
            for worker in Worker.all(connection=self._connection):
                workers.append(
                    {
                        "name": worker.name,
                        "state": getattr(worker, "state", "unknown"),
                        "queues": list(worker.queue_names()),
                        "current_job_id": worker.get_current_job_id(),
                    }
                )
        except RedisError as exc:  # pragma: no cover - network/redis specific
            logger.warning("Unable to list workers: %s", exc)

        scheduler_summary: dict[str, Any] = {}
        try:
            scheduler = Scheduler(connection=self._connection, queue_name=self.queue_names[0])
            scheduler_summary["scheduled_jobs"] = len(list(scheduler.get_jobs()))
            scheduler_summary["healthy"] = True
        except RedisError:  # pragma: no cover - redis specific
            scheduler_summary["scheduled_jobs"] = None
            scheduler_summary["healthy"] = False

        warnings: list[str] = []
        if not workers:
            warnings.append("no_workers")
        if scheduler_summary.get("healthy") is False:
            warnings.append("scheduler_unreachable")
        return {
            "status": "online" if not warnings else "degraded",
            "queues": queues,
            "workers": workers,
            "redis_url": redis_url,
            "scheduler": scheduler_summary,
            "warnings": warnings,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }


task_queue = TaskQueue()
