"""Payment request storage for create_payment_request actions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.automation.errors import ActionExecutionError
from app.models.payment import PaymentRequest
from app.models.work import WorkItem


class PaymentRequestStore:
    """Create a pending payment request and a finance work item to process it."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        organization_id: uuid.UUID,
        amount_cents: int,
        payer_email: str | None,
        description: str | None,
        due_at: datetime,
    ) -> str:
        if amount_cents <= 0:
            raise ActionExecutionError(f"invalid_amount:{amount_cents}")
        request = PaymentRequest(
            organization_id=organization_id,
            amount_cents=amount_cents,
            payer_email=payer_email,
            description=description,
            due_at=due_at,
        )
        self.session.add(request)
        await self.session.flush()
        self.session.add(
            WorkItem(
                organization_id=organization_id,
                item_type="payment_request",
                title=f"Process payment request: ${amount_cents / 100:,.2f}",
                description=description,
                priority="high",
                reference_type="payment_request",
                reference_id=str(request.id),
                due_at=due_at,
                assignee_role="finance",
            )
        )
        await self.session.flush()
        return str(request.id)
