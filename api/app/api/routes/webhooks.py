"""Outbound webhook endpoints used by trigger_webhook actions."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_request_context, require_automation_admin
from app.core.context import RequestContext
from app.schema.webhook import WebhookCreate, WebhookCreated, WebhookRead
from app.services import webhook_service

router = APIRouter()


@router.get("", response_model=list[WebhookRead])
async def list_webhooks(
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
) -> list[WebhookRead]:
    endpoints = await webhook_service.list_endpoints(session, ctx)
    return [WebhookRead.model_validate(endpoint) for endpoint in endpoints]


@router.post("", response_model=WebhookCreated, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    payload: WebhookCreate,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> WebhookCreated:
    """Register an endpoint; the signing secret is only shown in this response."""
    endpoint = await webhook_service.create_endpoint(session, ctx, name=payload.name, url=str(payload.url))
    return WebhookCreated.model_validate(endpoint)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_webhook(
    webhook_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> None:
    endpoint = await webhook_service.get_endpoint(session, ctx, webhook_id=webhook_id)
    await webhook_service.delete_endpoint(session, endpoint=endpoint)
