"""Redaction helpers for logs and diagnostics."""

from __future__ import annotations

import re

_URL_USERINFO_RE = re.compile(r"([a-z][a-z0-9+.-]*://)([^@/]+)@", re.IGNORECASE)
_QUERY_SECRET_RE = re.compile(
    r"(?i)(token|secret|password|api_key|apikey|access_token)=([^&\s]+)"
)
_BEARER_RE = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~-]+)")
_WEBHOOK_PATH_RE = re.compile(r"(?i)(hooks\.slack\.com/services/)[^\s?#]+")


def redact_secrets(text: str) -> str:
    """Redact URL credentials, tokens and Slack webhook paths from a log string."""
    if not text:
        return text
    redacted = _URL_USERINFO_RE.sub(r"\1***@", text)
    redacted = _QUERY_SECRET_RE.sub(r"\1=***", redacted)
    redacted = _BEARER_RE.sub(r"\1***", redacted)
    redacted = _WEBHOOK_PATH_RE.sub(r"\1***", redacted)
    return redacted


def mask_email(address: str | None) -> str:
    """Keep the first character of the local part and the domain: ``j***@example.org``."""
    if not address or "@" not in address:
        return "***"
    local, _, domain = address.partition("@")
    return f"{local[:1]}***@{domain}"
