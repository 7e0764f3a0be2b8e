"""Application settings parsed from environment variables and defaults."""

import json
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
DEFAULT_UPDATABLE_TABLES = ["member_organizations", "grant_applications", "work_items", "payment_requests"]


def _split_list(value: str | list[str] | None, *, lower: bool = False) -> list[str] | None:
    """Parse JSON, CSV, or list inputs into a cleaned list; None when nothing usable was given."""
    items: list[str] | None = None
    if isinstance(value, list):
        items = [str(item).strip() for item in value if str(item).strip()]
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(item).strip() for item in parsed if str(item).strip()]
        else:
            items = [item.strip() for item in stripped.split(",") if item.strip()]
    if items is None:
        return None
    return [item.lower() for item in items] if lower else items


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "Nonprofit Automation API"
    environment: str = "development"
    api_prefix: str = "/api"

    database_url: str = "postgresql+asyncpg://postgres:postgres@db:5432/automations"
    test_database_url: Optional[str] = None

    access_token_expires_minutes: int = 60
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"
    cors_origins: list[str] | str = Field(default_factory=lambda: DEFAULT_CORS_ORIGINS.copy())
    ops_admin_emails: list[str] | str = Field(default_factory=list)
    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(
        default_factory=lambda: ["default", "automations", "maintenance"]
    )
    health_allowlist: list[str] | str = Field(default_factory=list)

    slack_webhook_url: Optional[str] = None
    slack_timeout_seconds: float = 10.0
    webhook_timeout_seconds: float = 10.0
    automation_updatable_tables: list[str] | str = Field(
        default_factory=lambda: DEFAULT_UPDATABLE_TABLES.copy()
    )
    automation_template_missing: Literal["blank", "keep", "error"] = "blank"
    event_log_retention_days: int = 90
    compliance_tick_enabled: bool = True

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_origins(cls, value: str | list[str] | None) -> list[str]:
        """Normalize CORS origins from JSON, CSV, or list inputs."""
        return _split_list(value) or DEFAULT_CORS_ORIGINS.copy()

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        return _split_list(value) or ["default"]

    @field_validator("health_allowlist", mode="before")
    @classmethod
    def _split_health_allowlist(cls, value: str | list[str] | None) -> list[str]:
        return _split_list(value) or []

    @field_validator("ops_admin_emails", mode="before")
    @classmethod
    def _split_ops_admin_emails(cls, value: str | list[str] | None) -> list[str]:
        """Normalize ops admin emails; comparisons are case-insensitive."""
        return _split_list(value, lower=True) or []

    @field_validator("automation_updatable_tables", mode="before")
    @classmethod
    def _split_updatable_tables(cls, value: str | list[str] | None) -> list[str]:
        """Tables that update_field/update_status actions may write to."""
        tables = _split_list(value, lower=True)
        return DEFAULT_UPDATABLE_TABLES.copy() if tables is None else tables

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
