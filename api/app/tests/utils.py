"""Shared helpers for API tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from httpx import AsyncClient


@dataclass(slots=True)
class AuthContext:
    """Authenticated client context for API tests."""

    client: AsyncClient
    user: dict[str, Any]
    email: str
    password: str
    access_token: str

    @property
    def user_id(self) -> str:
        return str(self.user["id"])

    @property
    def organization_id(self) -> str:
        return str(self.user["organization_id"])

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


async def register_and_login(
    client: AsyncClient, *, prefix: str = "user", organization_name: str | None = None
) -> AuthContext:
    """Register a user with a fresh organization and log in, returning the auth context."""
    suffix = uuid.uuid4().hex[:8]
    email = f"{prefix}_{suffix}@example.com"
    password = "supersecret123"
    creds = {
        "email": email,
        "password": password,
        "display_name": f"{prefix.title()} {suffix}",
        "organization_name": organization_name or f"{prefix.title()} Foundation {suffix}",
    }

    register_res = await client.post("/api/auth/register", json=creds)
    assert register_res.status_code == 200
    user = register_res.json()["user"]

    login_res = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert login_res.status_code == 200

    return AuthContext(
        client=client,
        user=user,
        email=email,
        password=password,
        access_token=login_res.json()["access_token"],
    )
