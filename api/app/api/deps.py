from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.context import RequestContext
from app.core.security import decode_token
from app.db.session import get_session
from app.models.user import User
from app.services import user_service

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix}/auth/login", auto_error=False)


async def get_db() -> AsyncSession:
    async for session in get_session():
        yield session


async def get_current_user(
    session: AsyncSession = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
    access_token_cookie: str | None = Cookie(default=None, alias="access_token"),
) -> User:
    candidate = token or access_token_cookie
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return await _resolve_user_from_token(session, candidate)


async def _resolve_user_from_token(session: AsyncSession, token: str) -> User:
    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user_id = payload.get("sub")
    user = await user_service.get_user_by_id(session, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


async def get_optional_current_user(
    session: AsyncSession = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
    access_token_cookie: str | None = Cookie(default=None, alias="access_token"),
) -> User | None:
    candidate = token or access_token_cookie
    if not candidate:
        return None
    return await _resolve_user_from_token(session, candidate)


async def get_request_context(current_user: User = Depends(get_current_user)) -> RequestContext:
    """Resolve the caller's organization and role for service calls."""
    return RequestContext(
        organization_id=current_user.organization_id,
        user_id=current_user.id,
        role=current_user.role,
    )


async def require_automation_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Rule management and event emission are limited to owner/admin/finance roles."""
    if not ctx.can_manage_automations:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role for automations")
    return ctx


async def require_ops_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.email.lower() not in settings.ops_admin_emails:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Ops admin access required")
    return current_user
