"""Email outbox writer used by send_email actions.

Messages are queued in ``email_outbox``; delivery is a separate concern. A
repeated idempotency key returns the existing message instead of queuing twice.
"""

from __future__ import annotations

import logging
import uuid

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.errors import ActionExecutionError
from app.db.upsert import insert_ignore
from app.models.outbox import EmailOutbox
from app.utils.redaction import mask_email

logger = logging.getLogger("app.services.mail_service")


class OutboxMailer:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def send(
        self,
        *,
        organization_id: uuid.UUID,
        to: str,
        subject: str,
        body: str,
        template_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        try:
            to = validate_email(to, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ActionExecutionError(f"invalid_recipient:{to}") from exc
        values = {
            "organization_id": organization_id,
            "to_address": to,
            "subject": subject[:500],
            "body": body,
            "template_id": template_id,
            "idempotency_key": idempotency_key,
        }
        message_id = await insert_ignore(
            self.session, EmailOutbox, values, conflict_columns=("idempotency_key",)
        )
        if message_id is None:
            existing = await self.session.execute(
                select(EmailOutbox.id).where(EmailOutbox.idempotency_key == idempotency_key)
            )
            message_id = existing.scalar_one()
            logger.info("Email %s already queued for %s", idempotency_key, mask_email(to))
        else:
            logger.debug("Queued email %s for %s", message_id, mask_email(to))
        return str(message_id)
