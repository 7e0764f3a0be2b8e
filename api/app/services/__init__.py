from . import (
    automation_engine,
    automation_service,
    chat_service,
    mail_service,
    payment_service,
    record_service,
    reviewer_service,
    schedule_service,
    tag_service,
    task_queue,
    user_service,
    webhook_service,
    work_item_service,
)

__all__ = [
    "automation_engine",
    "automation_service",
    "chat_service",
    "mail_service",
    "payment_service",
    "record_service",
    "reviewer_service",
    "schedule_service",
    "tag_service",
    "task_queue",
    "user_service",
    "webhook_service",
    "work_item_service",
]
"""Service-layer helpers for API operations."""
