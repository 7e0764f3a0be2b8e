from app.models.automation import AutomationEventLog, AutomationRule, AutomationRun, AutomationSchedule
from app.models.grants import GrantApplication, GrantReviewer, ReviewerAssignment
from app.models.outbox import EmailOutbox
from app.models.payment import PaymentRequest
from app.models.records import MemberOrganization
from app.models.tagging import EntityTag
from app.models.user import Organization, User
from app.models.webhook import WebhookEndpoint
from app.models.work import WorkItem

__all__ = [
    "AutomationEventLog",
    "AutomationRule",
    "AutomationRun",
    "AutomationSchedule",
    "EmailOutbox",
    "EntityTag",
    "GrantApplication",
    "GrantReviewer",
    "MemberOrganization",
    "Organization",
    "PaymentRequest",
    "ReviewerAssignment",
    "User",
    "WebhookEndpoint",
    "WorkItem",
]
"""SQLAlchemy ORM models for the automation API."""
