"""JWT and password hashing helpers for staff authentication.

Access tokens carry the user id plus organization and role claims; the user is
still loaded from the database on each request so role changes apply at once.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def create_token(
    subject: str, expires_delta: timedelta, token_type: str, claims: Dict[str, Any] | None = None
) -> str:
    """Create a signed JWT for the given subject and token type."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        **(claims or {}),
        "sub": subject,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, *, organization_id: str | None = None, role: str | None = None) -> str:
    """Create an access token with the configured TTL."""
    delta = timedelta(minutes=settings.access_token_expires_minutes)
    claims = {key: value for key, value in {"org": organization_id, "role": role}.items() if value}
    return create_token(subject, delta, "access", claims)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a JWT and return its payload if valid."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
