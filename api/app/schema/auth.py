"""Authentication-related response schemas."""

from pydantic import BaseModel

from app.schema.user import UserRead


class TokenResponse(BaseModel):
    """Access token returned after register/login."""
    access_token: str
    token_type: str = "bearer"
    user: UserRead
