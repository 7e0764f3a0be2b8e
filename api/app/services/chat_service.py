"""Slack incoming-webhook notifier for slack_notify actions."""

from __future__ import annotations

import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from app.automation.errors import ActionExecutionError
from app.core.config import settings
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.chat_service")


class ChatDeliveryError(Exception):
    """Retryable delivery failure (5xx or rate limit)."""


class SlackNotifier:
    def __init__(self, webhook_url: str | None = None, *, timeout: float | None = None) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self.timeout = timeout if timeout is not None else settings.slack_timeout_seconds

    async def post(self, *, channel: str, text: str) -> None:
        if not self.webhook_url:
            raise ActionExecutionError("slack_webhook_not_configured")
        payload = {"channel": channel, "text": text}
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential_jitter(initial=1, max=8),
            retry=retry_if_exception_type((httpx.TransportError, ChatDeliveryError)),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.webhook_url, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise ChatDeliveryError(f"Slack error {response.status_code}")
                if response.status_code >= 400:
                    logger.warning(
                        "Slack rejected message for %s via %s: %s",
                        channel,
                        redact_secrets(self.webhook_url),
                        response.status_code,
                    )
                    raise ActionExecutionError(f"slack_error:{response.status_code}")
