from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.core.config import settings
from app.core.security import create_access_token
from app.models.user import User
from app.schema.auth import TokenResponse
from app.schema.user import UserCreate, UserLogin, UserRead
from app.services import user_service

router = APIRouter()

ACCESS_COOKIE_NAME = "access_token"


def set_auth_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        access_token,
        max_age=settings.access_token_expires_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.environment.lower() == "production",
        path="/",
    )


def _token_response(user: User) -> TokenResponse:
    access = create_access_token(str(user.id), organization_id=str(user.organization_id), role=user.role)
    return TokenResponse(access_token=access, user=UserRead.model_validate(user))


@router.post("/register", response_model=TokenResponse)
async def register(payload: UserCreate, response: Response, session: AsyncSession = Depends(get_db)) -> TokenResponse:
    """Create a user together with a new organization they own."""
    user = await user_service.create_user(
        session,
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
        organization_name=payload.organization_name,
    )
    tokens = _token_response(user)
    set_auth_cookie(response, tokens.access_token)
    return tokens


@router.post("/login", response_model=TokenResponse)
async def login(payload: UserLogin, response: Response, session: AsyncSession = Depends(get_db)) -> TokenResponse:
    user = await user_service.authenticate_user(session, payload.email, payload.password)
    tokens = _token_response(user)
    set_auth_cookie(response, tokens.access_token)
    return tokens


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response) -> Response:
    response.delete_cookie(ACCESS_COOKIE_NAME, path="/")
    response.status_code = status.HTTP_204_NO_CONTENT
    return response


@router.get("/me", response_model=UserRead)
async def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    """Return the current authenticated user."""
    return current_user
