"""Recipe catalog browsing and installation."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, require_automation_admin
from app.automation.actions import dump_actions
from app.automation.recipes import Recipe, all_trigger_events, foundation_recipes, recipes_by_category
from app.core.context import RequestContext
from app.models.user import User
from app.schema.automation import RecipeInstallRequest, RecipeInstallResponse, RecipeRead
from app.services import automation_service

router = APIRouter()


def _serialize(recipe: Recipe) -> RecipeRead:
    return RecipeRead(
        name=recipe.name,
        description=recipe.description,
        category=recipe.category,
        trigger_events=list(recipe.trigger_events),
        filters=recipe.filters,
        actions=dump_actions(recipe.actions),
        is_active=recipe.is_active,
        stop_on_error=recipe.stop_on_error,
    )


@router.get("", response_model=list[RecipeRead])
async def list_recipes(_: User = Depends(get_current_user)) -> list[RecipeRead]:
    return [_serialize(recipe) for recipe in foundation_recipes()]


@router.get("/trigger-events", response_model=list[str])
async def list_trigger_events(_: User = Depends(get_current_user)) -> list[str]:
    return all_trigger_events()


@router.get("/categories/{category}", response_model=list[RecipeRead])
async def list_recipes_in_category(category: str, _: User = Depends(get_current_user)) -> list[RecipeRead]:
    """Unknown categories return an empty list."""
    return [_serialize(recipe) for recipe in recipes_by_category(category)]


@router.post("/install", response_model=RecipeInstallResponse)
async def install_recipes(
    payload: RecipeInstallRequest,
    session: AsyncSession = Depends(get_db),
    ctx: RequestContext = Depends(require_automation_admin),
) -> RecipeInstallResponse:
    installed, skipped = await automation_service.install_recipes(
        session,
        ctx,
        recipe_name=payload.recipe_name,
        category=payload.category,
        install_all=payload.install_all,
    )
    return RecipeInstallResponse(installed=installed, skipped=skipped)
