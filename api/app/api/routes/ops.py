from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import require_ops_admin
from app.automation.observability import collaborator_monitor
from app.models.user import User
from app.services.task_queue import task_queue

router = APIRouter()


@router.get("/queues", tags=["ops"])
async def queue_health(_: User = Depends(require_ops_admin)) -> dict:
    """
    Minimal operations dashboard for Redis/RQ health and collaborator circuits.

    Requires an ops admin to avoid leaking operational data.
    """
    snapshot = task_queue.snapshot()
    snapshot["collaborators"] = await collaborator_monitor.snapshot()
    return snapshot
