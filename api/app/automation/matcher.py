"""Select the recipes an event should fire.

Invariants:
- A recipe matches when it is active, lists the event type, and its filters pass.
- Every matching recipe is returned, in catalog order.
- Filter evaluation fails closed: unresolvable paths, incomparable values and
  unknown operators exclude the recipe and never raise.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence, TypeVar

from app.automation.templating import MISSING, resolve_path

logger = logging.getLogger("app.automation.matcher")


class _Matchable(Protocol):
    name: str
    trigger_events: Sequence[str]
    filters: Mapping[str, Any] | None
    is_active: bool


RecipeT = TypeVar("RecipeT", bound=_Matchable)


def _same(value: Any, expected: Any) -> bool:
    # bool is an int subclass; True must not equal 1.
    if isinstance(value, bool) or isinstance(expected, bool):
        return type(value) is type(expected) and value == expected
    return value == expected


def _contains(value: Any, needle: Any) -> bool:
    if isinstance(value, (list, tuple, set, frozenset)):
        return any(_same(item, needle) for item in value)
    return str(needle) in str(value)


def _membership(value: Any, options: Any) -> bool:
    if not isinstance(options, (list, tuple, set, frozenset)):
        raise TypeError("'in' expects a list")
    return any(_same(value, option) for option in options)


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": _same,
    "ne": lambda value, expected: not _same(value, expected),
    "gt": lambda value, expected: value > expected,
    "gte": lambda value, expected: value >= expected,
    "lt": lambda value, expected: value < expected,
    "lte": lambda value, expected: value <= expected,
    "in": _membership,
    "nin": lambda value, options: not _membership(value, options),
    "contains": _contains,
    "starts_with": lambda value, prefix: str(value).startswith(str(prefix)),
    "ends_with": lambda value, suffix: str(value).endswith(str(suffix)),
}

# Operators that can be satisfied by an absent field.
_ABSENT_OK = {"ne", "nin"}


def _check_condition(field: str, value: Any, condition: Any, *, recipe_name: str) -> bool:
    if not isinstance(condition, Mapping):
        if value is MISSING:
            return False
        return _same(value, condition)

    for operator, expected in condition.items():
        if operator == "exists":
            present = value is not MISSING and value is not None
            if present != bool(expected):
                return False
            continue
        check = OPERATORS.get(operator)
        if check is None:
            logger.warning(
                "Unknown filter operator '%s' on %s in recipe '%s'; failing closed",
                operator,
                field,
                recipe_name,
            )
            return False
        if value is MISSING or value is None:
            if operator in _ABSENT_OK:
                continue
            return False
        try:
            if not check(value, expected):
                return False
        except TypeError as exc:
            logger.warning(
                "Filter %s.%s in recipe '%s' could not compare %r: %s; failing closed",
                field,
                operator,
                recipe_name,
                value,
                exc,
            )
            return False
    return True


def evaluate_filters(
    filters: Mapping[str, Any] | None,
    payload: Mapping[str, Any],
    *,
    recipe_name: str = "",
) -> bool:
    """Return True when every field condition holds for the payload."""
    if not filters:
        return True
    for field, condition in filters.items():
        value = resolve_path(payload, field)
        if not _check_condition(field, value, condition, recipe_name=recipe_name):
            return False
    return True


def triggers_on(recipe: _Matchable, event_type: str) -> bool:
    return recipe.is_active and event_type in recipe.trigger_events


def match_recipes(recipes: Iterable[RecipeT], event_type: str, payload: Mapping[str, Any]) -> list[RecipeT]:
    """Return all active recipes triggered by the event whose filters pass."""
    matched: list[RecipeT] = []
    for recipe in recipes:
        if not triggers_on(recipe, event_type):
            continue
        if evaluate_filters(recipe.filters, payload, recipe_name=recipe.name):
            matched.append(recipe)
    logger.debug("Event %s matched %d recipe(s)", event_type, len(matched))
    return matched
