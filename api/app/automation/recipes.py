"""Automation recipes and the foundation recipe catalog.

The catalog ships as YAML under ``app/samples/recipes`` and is validated on load.

Invariants:
- ``trigger_events`` and ``actions`` are non-empty.
- Every trigger event is dot-namespaced (``entity.action[.detail]``).
- Recipe names are unique within a catalog.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.automation.actions import AutomationAction, path_fields, template_fields
from app.automation.errors import CatalogError
from app.automation.events import EVENT_NAME_RE, declared_fields
from app.automation.templating import template_placeholders

RecipeCategory = Literal[
    "donations",
    "membership",
    "grants",
    "events",
    "volunteers",
    "compliance",
    "board",
]

RECIPE_CATEGORIES: tuple[str, ...] = (
    "donations",
    "membership",
    "grants",
    "events",
    "volunteers",
    "compliance",
    "board",
)


class Recipe(BaseModel):
    """Declarative automation rule: trigger events, filters and ordered actions."""

    name: str
    description: str = ""
    trigger_events: list[str]
    filters: dict[str, Any] | None = None
    actions: list[AutomationAction]
    is_active: bool = True
    stop_on_error: bool | None = None
    category: RecipeCategory

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must be non-empty")
        return value.strip()

    @field_validator("trigger_events")
    @classmethod
    def _validate_trigger_events(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("trigger_events must be non-empty")
        for event_name in value:
            if not EVENT_NAME_RE.match(event_name):
                raise ValueError(f"trigger event '{event_name}' must look like entity.action")
        return value

    @field_validator("actions")
    @classmethod
    def _validate_actions(cls, value: list[AutomationAction]) -> list[AutomationAction]:
        if not value:
            raise ValueError("actions must be non-empty")
        return value

    @property
    def halts_on_error(self) -> bool:
        """Unset ``stop_on_error`` means best-effort execution."""
        return bool(self.stop_on_error)


class RecipeCatalog(BaseModel):
    """Top-level recipe catalog document."""

    version: int = 1
    recipes: list[Recipe] = Field(default_factory=list)

    model_config = {"extra": "forbid"}

    @field_validator("recipes")
    @classmethod
    def _unique_names(cls, value: list[Recipe]) -> list[Recipe]:
        seen: set[str] = set()
        for recipe in value:
            if recipe.name in seen:
                raise ValueError(f"duplicate recipe name '{recipe.name}'")
            seen.add(recipe.name)
        return value


def load_recipe_catalog(path: Path) -> RecipeCatalog:
    """Load and validate a recipe catalog from YAML."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise CatalogError(f"{path}: invalid YAML ({exc})") from exc
    if not isinstance(data, dict):
        raise CatalogError(f"{path}: catalog must be a mapping")
    try:
        return RecipeCatalog.model_validate(data)
    except ValidationError as exc:
        raise CatalogError(f"{path}: {exc}") from exc


def validate_recipe_paths(paths: Iterable[Path]) -> list[str]:
    """Validate catalog files, returning formatted error strings."""
    errors: list[str] = []
    for path in paths:
        try:
            catalog = load_recipe_catalog(path)
        except CatalogError as exc:
            errors.append(exc.message)
            continue
        for recipe in catalog.recipes:
            missing = undeclared_placeholders(recipe)
            if missing:
                errors.append(
                    f"{path}: recipe '{recipe.name}' uses undeclared fields: {', '.join(sorted(missing))}"
                )
    return errors


def recipe_placeholders(recipe: Recipe) -> set[str]:
    """Return top-level payload fields referenced by templates and paths."""
    fields: set[str] = set()
    for action in recipe.actions:
        for template in template_fields(action).values():
            fields.update(path.split(".")[0] for path in template_placeholders(template))
        fields.update(path.split(".")[0] for path in path_fields(action).values())
    if recipe.filters:
        fields.update(field.split(".")[0] for field in recipe.filters)
    return fields


def undeclared_placeholders(recipe: Recipe) -> set[str]:
    """Return referenced fields the trigger events' payload schemas do not declare.

    Events without a declared schema are not checked.
    """
    available = declared_fields(recipe.trigger_events)
    if available is None:
        return set()
    return recipe_placeholders(recipe) - available


@lru_cache
def _foundation_catalog() -> RecipeCatalog:
    from app.samples.recipes import foundation_catalog_path

    return load_recipe_catalog(foundation_catalog_path())


def foundation_recipes() -> list[Recipe]:
    """Return the shipped recipe pack in catalog order."""
    return list(_foundation_catalog().recipes)


FOUNDATION_RECIPE_PACK: list[Recipe] = foundation_recipes()


def recipes_by_category(category: str, recipes: Iterable[Recipe] | None = None) -> list[Recipe]:
    """Return recipes in the given category, preserving catalog order."""
    source = FOUNDATION_RECIPE_PACK if recipes is None else recipes
    return [recipe for recipe in source if recipe.category == category]


def all_trigger_events(recipes: Iterable[Recipe] | None = None) -> list[str]:
    """Return the sorted, de-duplicated set of trigger events across recipes."""
    source = FOUNDATION_RECIPE_PACK if recipes is None else recipes
    events: set[str] = set()
    for recipe in source:
        events.update(recipe.trigger_events)
    return sorted(events)


def get_recipe(name: str, recipes: Iterable[Recipe] | None = None) -> Recipe | None:
    """Look up a recipe by its display name."""
    source = FOUNDATION_RECIPE_PACK if recipes is None else recipes
    for recipe in source:
        if recipe.name == name:
            return recipe
    return None
