"""Event taxonomy and payload schemas for automation triggers.

Event names are dot-namespaced ``entity.action`` strings. ``EVENT_PAYLOAD_FIELDS``
declares which payload fields each event carries so recipe templates can be
checked against it; ``ORGANIZATION_CONTEXT_FIELDS`` are merged in from the
organization record at dispatch time.
"""

from __future__ import annotations

import enum
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

EVENT_NAME_RE = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)+$")

EventSource = Literal["webhook", "api", "cron", "manual"]


class EventType(str, enum.Enum):
    """Dot-namespaced event names emitted by the platform."""

    DONATION_CREATED = "donation.created"
    DONATION_REFUNDED = "donation.refunded"

    MEMBERSHIP_CREATED = "membership.created"
    MEMBERSHIP_RENEWED = "membership.renewed"
    MEMBERSHIP_EXPIRED = "membership.expired"
    MEMBERSHIP_EXPIRING_SOON = "membership.expiring_soon"

    PAYMENT_FAILED = "payment.failed"
    PAYMENT_SUCCEEDED = "payment.succeeded"

    GRANT_APPLICATION_SUBMITTED = "grant.application.submitted"
    GRANT_APPLICATION_READY_FOR_REVIEW = "grant.application.ready_for_review"
    GRANT_REVIEW_ASSIGNED = "grant.review.assigned"
    GRANT_REVIEW_COMPLETED = "grant.review.completed"
    GRANT_AWARDED = "grant.awarded"
    GRANT_DECLINED = "grant.declined"
    GRANT_REPORT_DUE = "grant.report.due"
    GRANT_DISBURSEMENT_SCHEDULED = "grant.disbursement.scheduled"
    GRANT_DISBURSEMENT_PAID = "grant.disbursement.paid"

    EVENT_REGISTRATION_CREATED = "event.registration.created"
    EVENT_REGISTRATION_PAID = "event.registration.paid"
    EVENT_REGISTRATION_CANCELED = "event.registration.canceled"
    EVENT_REMINDER_24H = "event.reminder.24h"
    EVENT_COMPLETED = "event.completed"

    VOLUNTEER_SIGNUP_CREATED = "volunteer.signup.created"
    VOLUNTEER_HOURS_LOGGED = "volunteer.hours.logged"
    VOLUNTEER_HOURS_MILESTONE = "volunteer.hours.milestone"

    BOARD_MEETING_REMINDER_7D = "board.meeting.reminder.7d"
    BOARD_MEETING_REMINDER_1D = "board.meeting.reminder.1d"
    BOARD_VOTE_CREATED = "board.vote.created"

    COMPLIANCE_TICK_DAILY = "compliance.tick.daily"
    COMPLIANCE_TICK_WEEKLY = "compliance.tick.weekly"

    MEMBER_HEALTH_ALERT = "member.health.alert"
    MEMBER_PROFILE_UPDATED = "member.profile.updated"

    SCHEDULE_FIRED = "schedule.fired"


EVENT_TAXONOMY: frozenset[str] = frozenset(member.value for member in EventType)

ORGANIZATION_CONTEXT_FIELDS: frozenset[str] = frozenset(
    {
        "org_name",
        "portal_url",
        "billing_url",
        "renewal_url",
        "grantee_portal_url",
        "linkedin_url",
        "newsletter_url",
        "volunteer_url",
    }
)

_DONATION = {
    "donation_id",
    "donor_email",
    "donor_name",
    "donor_profile_id",
    "amount_cents",
    "amount_dollars",
    "donation_date",
    "is_first_donation",
    "is_recurring",
}
_MEMBER = {"member_org_id", "member_email", "member_name", "owner_profile_id"}
_APPLICATION = {
    "application_id",
    "applicant_email",
    "applicant_name",
    "project_title",
    "organization_name",
    "requested_amount_cents",
    "requested_amount_dollars",
}
_REGISTRATION = {
    "registration_id",
    "event_id",
    "event_title",
    "event_date",
    "event_time",
    "event_location",
    "registrant_email",
    "registrant_name",
    "is_virtual",
    "virtual_link",
    "calendar_link",
}

EVENT_PAYLOAD_FIELDS: dict[str, frozenset[str]] = {
    EventType.DONATION_CREATED.value: frozenset(_DONATION),
    EventType.MEMBERSHIP_RENEWED.value: frozenset(_MEMBER | {"expires_at", "amount_cents", "benefits_list"}),
    EventType.PAYMENT_FAILED.value: frozenset(_MEMBER | {"amount_cents"}),
    EventType.MEMBERSHIP_EXPIRING_SOON.value: frozenset(_MEMBER | {"expires_at", "days_until_expiry"}),
    EventType.MEMBERSHIP_EXPIRED.value: frozenset(_MEMBER | {"expires_at", "recent_activities"}),
    EventType.GRANT_APPLICATION_SUBMITTED.value: frozenset(_APPLICATION | {"submitted_at"}),
    EventType.GRANT_APPLICATION_READY_FOR_REVIEW.value: frozenset(
        _APPLICATION | {"reviewer_emails", "review_deadline", "review_url"}
    ),
    EventType.GRANT_REVIEW_COMPLETED.value: frozenset(
        _APPLICATION | {"all_reviews_complete", "average_score"}
    ),
    EventType.GRANT_AWARDED.value: frozenset(
        _APPLICATION
        | {
            "award_amount_cents",
            "award_amount_dollars",
            "grant_start",
            "grant_end",
            "first_disbursement_cents",
            "finance_email",
        }
    ),
    EventType.GRANT_DECLINED.value: frozenset(_APPLICATION),
    EventType.EVENT_REGISTRATION_CREATED.value: frozenset(_REGISTRATION),
    EventType.EVENT_REMINDER_24H.value: frozenset(_REGISTRATION),
    EventType.VOLUNTEER_SIGNUP_CREATED.value: frozenset(
        {
            "signup_id",
            "volunteer_email",
            "volunteer_name",
            "volunteer_profile_id",
            "opportunity_title",
            "shift_date",
            "shift_time",
            "shift_location",
            "coordinator_name",
            "coordinator_email",
        }
    ),
    EventType.VOLUNTEER_HOURS_MILESTONE.value: frozenset(
        {
            "volunteer_email",
            "volunteer_name",
            "volunteer_profile_id",
            "milestone",
            "total_hours",
            "start_date",
        }
    ),
    EventType.COMPLIANCE_TICK_DAILY.value: frozenset({"tick_date"}),
    EventType.SCHEDULE_FIRED.value: frozenset({"trigger", "schedule_id", "schedule_name", "fired_at"}),
    EventType.BOARD_MEETING_REMINDER_7D.value: frozenset(
        {
            "meeting_id",
            "meeting_date",
            "meeting_time",
            "meeting_location",
            "packet_url",
            "board_member_emails",
        }
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutomationEvent(BaseModel):
    """An incoming domain event handed to the matcher."""

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    organization_id: uuid.UUID | None = None
    source_type: EventSource = "api"
    source_id: str | None = None
    occurred_at: datetime = Field(default_factory=_utcnow)

    @field_validator("type")
    @classmethod
    def _validate_type(cls, value: str) -> str:
        if not EVENT_NAME_RE.match(value):
            raise ValueError(f"event type '{value}' must be dot-namespaced like entity.action")
        return value


def _dollars(cents: Any) -> str | None:
    try:
        return f"{int(cents) / 100:.2f}"
    except (TypeError, ValueError):
        return None


_DERIVED_DOLLARS = {
    "amount_cents": "amount_dollars",
    "requested_amount_cents": "requested_amount_dollars",
    "award_amount_cents": "award_amount_dollars",
}

_TIMESTAMP_DEFAULTS = {
    EventType.DONATION_CREATED.value: "donation_date",
    EventType.GRANT_APPLICATION_SUBMITTED.value: "submitted_at",
}


def enrich_payload(event_type: str, payload: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    """Return a copy of the payload with derived display fields filled in.

    Cent amounts gain a two-decimal dollar string and a few events gain a
    timestamp when the producer did not send one. Fields already present are
    left alone.
    """
    enriched = dict(payload)
    for cents_field, dollars_field in _DERIVED_DOLLARS.items():
        if cents_field in enriched and dollars_field not in enriched:
            dollars = _dollars(enriched[cents_field])
            if dollars is not None:
                enriched[dollars_field] = dollars
    timestamp_field = _TIMESTAMP_DEFAULTS.get(event_type)
    if timestamp_field and timestamp_field not in enriched:
        enriched[timestamp_field] = (now or _utcnow()).isoformat()
    return enriched


def declared_fields(event_types: list[str]) -> frozenset[str] | None:
    """Return fields available on every listed event, or None if any event is undeclared."""
    schemas = [EVENT_PAYLOAD_FIELDS.get(event_type) for event_type in event_types]
    if not schemas or any(schema is None for schema in schemas):
        return None
    common = frozenset.intersection(*schemas)  # type: ignore[arg-type]
    return common | ORGANIZATION_CONTEXT_FIELDS
