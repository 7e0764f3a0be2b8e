"""Properties of the shipped foundation recipe catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from app.automation.errors import CatalogError
from app.automation.events import EVENT_NAME_RE, EVENT_TAXONOMY
from app.automation.recipes import (
    FOUNDATION_RECIPE_PACK,
    RECIPE_CATEGORIES,
    all_trigger_events,
    get_recipe,
    load_recipe_catalog,
    recipes_by_category,
    undeclared_placeholders,
    validate_recipe_paths,
)
from app.samples.recipes import catalog_paths


def test_every_recipe_has_well_formed_triggers_and_actions():
    assert FOUNDATION_RECIPE_PACK
    for recipe in FOUNDATION_RECIPE_PACK:
        assert recipe.trigger_events, recipe.name
        assert all(EVENT_NAME_RE.match(event) for event in recipe.trigger_events), recipe.name
        assert recipe.actions, recipe.name
        assert recipe.category in RECIPE_CATEGORIES


def test_recipe_names_are_unique():
    names = [recipe.name for recipe in FOUNDATION_RECIPE_PACK]
    assert len(names) == len(set(names))


def test_all_trigger_events_is_sorted_union_without_duplicates():
    events = all_trigger_events()
    expected = set()
    for recipe in FOUNDATION_RECIPE_PACK:
        expected.update(recipe.trigger_events)
    assert events == sorted(expected)
    assert len(events) == len(set(events))


def test_trigger_events_belong_to_the_taxonomy():
    assert set(all_trigger_events()) <= EVENT_TAXONOMY


def test_recipes_by_category_preserves_catalog_order():
    grants = recipes_by_category("grants")
    assert grants
    assert all(recipe.category == "grants" for recipe in grants)
    expected = [recipe.name for recipe in FOUNDATION_RECIPE_PACK if recipe.category == "grants"]
    assert [recipe.name for recipe in grants] == expected


@pytest.mark.parametrize("category", ["fundraising", "", "GRANTS"])
def test_recipes_by_category_with_no_members_is_empty(category):
    assert recipes_by_category(category) == []


def test_get_recipe_by_name():
    recipe = get_recipe("Major Gift Alert ($1,000+)")
    assert recipe is not None
    assert recipe.filters == {"amount_cents": {"gte": 100000}}
    assert get_recipe("No Such Recipe") is None


def test_catalog_placeholders_are_declared_by_event_schemas():
    for recipe in FOUNDATION_RECIPE_PACK:
        assert undeclared_placeholders(recipe) == set(), recipe.name
    assert validate_recipe_paths(catalog_paths()) == []


def test_catalog_loader_rejects_duplicates_and_empty_triggers(tmp_path: Path):
    duplicate = tmp_path / "duplicate.yaml"
    duplicate.write_text(
        """
version: 2
recipes:
  - name: Same
    category: board
    trigger_events: [board.vote.created]
    actions: [{type: slack_notify, channel: "#board", message_template: hi}]
  - name: Same
    category: board
    trigger_events: [board.vote.created]
    actions: [{type: slack_notify, channel: "#board", message_template: hi}]
""",
        encoding="utf-8",
    )
    with pytest.raises(CatalogError, match="duplicate recipe name"):
        load_recipe_catalog(duplicate)

    empty = tmp_path / "empty.yaml"
    empty.write_text(
        """
recipes:
  - name: Nothing
    category: board
    trigger_events: []
    actions: [{type: slack_notify, channel: "#board", message_template: hi}]
""",
        encoding="utf-8",
    )
    errors = validate_recipe_paths([empty])
    assert len(errors) == 1
    assert "trigger_events" in errors[0]


def test_catalog_validation_reports_undeclared_placeholders(tmp_path: Path):
    catalog = tmp_path / "typo.yaml"
    catalog.write_text(
        """
recipes:
  - name: Receipt With Typo
    category: donations
    trigger_events: [donation.created]
    actions:
      - type: send_email
        to_path: donor_email
        subject: "Thanks {{donor_nmae}}"
        body_template: "Thanks"
""",
        encoding="utf-8",
    )
    errors = validate_recipe_paths([catalog])
    assert errors == [f"{catalog}: recipe 'Receipt With Typo' uses undeclared fields: donor_nmae"]
