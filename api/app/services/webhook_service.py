"""Outbound webhook registry and delivery for trigger_webhook actions.

Bodies are signed with HMAC-SHA256 over the exact bytes sent, using the
endpoint's secret; receivers verify ``X-Webhook-Signature``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from app.automation.errors import ActionExecutionError
from app.core.config import settings
from app.core.context import RequestContext
from app.models.webhook import WebhookEndpoint
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.webhook_service")


class WebhookDeliveryError(Exception):
    """Retryable delivery failure (5xx or rate limit)."""


def sign_body(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


async def list_endpoints(session: AsyncSession, ctx: RequestContext) -> list[WebhookEndpoint]:
    result = await session.execute(
        select(WebhookEndpoint)
        .where(WebhookEndpoint.organization_id == ctx.organization_id)
        .order_by(WebhookEndpoint.created_at.asc())
    )
    return list(result.scalars().all())


async def create_endpoint(session: AsyncSession, ctx: RequestContext, *, name: str, url: str) -> WebhookEndpoint:
    """Register an endpoint and generate its signing secret."""
    existing = await session.execute(
        select(WebhookEndpoint.id).where(
            WebhookEndpoint.organization_id == ctx.organization_id, WebhookEndpoint.name == name
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Webhook name already exists")
    endpoint = WebhookEndpoint(
        organization_id=ctx.organization_id,
        name=name,
        url=url,
        secret=secrets.token_urlsafe(32),
    )
    session.add(endpoint)
    await session.commit()
    await session.refresh(endpoint)
    logger.info("Registered webhook %s for organization %s", endpoint.id, ctx.organization_id)
    return endpoint


async def get_endpoint(session: AsyncSession, ctx: RequestContext, *, webhook_id: uuid.UUID) -> WebhookEndpoint:
    result = await session.execute(
        select(WebhookEndpoint).where(
            WebhookEndpoint.id == webhook_id, WebhookEndpoint.organization_id == ctx.organization_id
        )
    )
    endpoint = result.scalar_one_or_none()
    if not endpoint:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return endpoint


async def delete_endpoint(session: AsyncSession, *, endpoint: WebhookEndpoint) -> None:
    await session.delete(endpoint)
    await session.commit()


class WebhookDispatcher:
    def __init__(self, session: AsyncSession, *, timeout: float | None = None) -> None:
        self.session = session
        self.timeout = timeout if timeout is not None else settings.webhook_timeout_seconds

    async def _load(self, organization_id: uuid.UUID, webhook_id: str) -> WebhookEndpoint:
        try:
            endpoint_id = uuid.UUID(str(webhook_id))
        except ValueError as exc:
            raise ActionExecutionError(f"webhook_not_found:{webhook_id}") from exc
        result = await self.session.execute(
            select(WebhookEndpoint).where(
                WebhookEndpoint.id == endpoint_id,
                WebhookEndpoint.organization_id == organization_id,
                WebhookEndpoint.is_active.is_(True),
            )
        )
        endpoint = result.scalar_one_or_none()
        if endpoint is None:
            raise ActionExecutionError(f"webhook_not_found:{webhook_id}")
        return endpoint

    async def deliver(self, *, organization_id: uuid.UUID, webhook_id: str, payload: dict[str, Any]) -> int:
        """POST the payload and return the response status."""
        endpoint = await self._load(organization_id, webhook_id)
        body = json.dumps(payload, default=str, separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Id": str(endpoint.id),
            "X-Webhook-Signature": sign_body(endpoint.secret, body),
        }
        response: httpx.Response | None = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential_jitter(initial=1, max=8),
            retry=retry_if_exception_type((httpx.TransportError, WebhookDeliveryError)),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(endpoint.url, content=body, headers=headers)
                if response.status_code == 429 or response.status_code >= 500:
                    raise WebhookDeliveryError(f"Webhook error {response.status_code}")

        endpoint.last_status = response.status_code
        endpoint.last_delivered_at = datetime.now(timezone.utc)
        if response.status_code >= 400:
            logger.warning(
                "Webhook %s rejected delivery via %s: %s",
                endpoint.id,
                redact_secrets(endpoint.url),
                response.status_code,
            )
            raise ActionExecutionError(f"webhook_rejected:{response.status_code}")
        logger.info("Delivered webhook %s (%s)", endpoint.id, response.status_code)
        return response.status_code
