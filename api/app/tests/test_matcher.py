from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pytest

from app.automation.matcher import evaluate_filters, match_recipes
from app.automation.recipes import FOUNDATION_RECIPE_PACK


@dataclass
class _Rule:
    name: str
    trigger_events: list[str]
    filters: dict[str, Any] | None = None
    is_active: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


def test_donation_matches_receipt_and_major_gift_but_not_first_time_welcome():
    payload = {"amount_cents": 150000, "donor_name": "Jane Doe", "is_first_donation": False}
    matched = [recipe.name for recipe in match_recipes(FOUNDATION_RECIPE_PACK, "donation.created", payload)]
    assert "Donation Receipt (Immediate)" in matched
    assert "Major Gift Alert ($1,000+)" in matched
    assert "First-Time Donor Welcome" not in matched
    assert matched.index("Donation Receipt (Immediate)") < matched.index("Major Gift Alert ($1,000+)")


def test_small_first_donation_skips_major_gift():
    payload = {"amount_cents": 2500, "is_first_donation": True}
    matched = {recipe.name for recipe in match_recipes(FOUNDATION_RECIPE_PACK, "donation.created", payload)}
    assert matched == {"Donation Receipt (Immediate)", "First-Time Donor Welcome"}


def test_inactive_and_untriggered_rules_are_excluded():
    rules = [
        _Rule("active", ["donation.created"]),
        _Rule("inactive", ["donation.created"], is_active=False),
        _Rule("other", ["grant.awarded"]),
    ]
    assert [rule.name for rule in match_recipes(rules, "donation.created", {})] == ["active"]


@pytest.mark.parametrize(
    ("filters", "payload", "expected"),
    [
        ({"tier": "gold"}, {"tier": "gold"}, True),
        ({"tier": "gold"}, {"tier": "silver"}, False),
        ({"amount_cents": {"gt": 100, "lte": 500}}, {"amount_cents": 500}, True),
        ({"amount_cents": {"gt": 100, "lte": 500}}, {"amount_cents": 501}, False),
        ({"amount_cents": {"lt": 100}}, {"amount_cents": 99}, True),
        ({"milestone": {"in": [50, 100]}}, {"milestone": 100}, True),
        ({"milestone": {"nin": [50, 100]}}, {"milestone": 100}, False),
        ({"status": {"ne": "lapsed"}}, {}, True),
        ({"tags": {"contains": "vip"}}, {"tags": ["vip", "board"]}, True),
        ({"email": {"ends_with": "@example.org"}}, {"email": "a@example.org"}, True),
        ({"email": {"starts_with": "board"}}, {"email": "a@example.org"}, False),
        ({"donor.address.state": {"eq": "OK"}}, {"donor": {"address": {"state": "OK"}}}, True),
        ({"notes": {"exists": False}}, {}, True),
        ({"notes": {"exists": True}}, {"notes": None}, False),
        ({"a": 1, "b": 2}, {"a": 1, "b": 3}, False),
        (None, {}, True),
    ],
)
def test_filter_operators(filters, payload, expected):
    assert evaluate_filters(filters, payload) is expected


def test_missing_field_fails_closed():
    assert evaluate_filters({"amount_cents": {"gte": 100000}}, {}) is False
    assert evaluate_filters({"is_first_donation": True}, {}) is False


def test_incomparable_values_fail_closed_with_warning(caplog):
    caplog.set_level(logging.WARNING, logger="app.automation.matcher")
    assert evaluate_filters({"amount_cents": {"gte": 100000}}, {"amount_cents": "lots"}, recipe_name="Gift") is False
    assert "could not compare" in caplog.text


def test_unknown_operator_fails_closed_with_warning(caplog):
    caplog.set_level(logging.WARNING, logger="app.automation.matcher")
    assert evaluate_filters({"amount_cents": {"between": [1, 2]}}, {"amount_cents": 1}, recipe_name="Odd") is False
    assert "Unknown filter operator 'between'" in caplog.text


def test_in_operator_with_non_list_fails_closed():
    assert evaluate_filters({"milestone": {"in": 50}}, {"milestone": 50}) is False


@pytest.mark.parametrize(
    "filters, payload",
    [
        ({"is_first_donation": True}, {"is_first_donation": 1}),
        ({"is_first_donation": {"eq": True}}, {"is_first_donation": 1}),
        ({"milestone": {"eq": 1}}, {"milestone": True}),
        ({"milestone": {"in": [1, 2]}}, {"milestone": True}),
        ({"tags": {"contains": 0}}, {"tags": [False]}),
    ],
)
def test_booleans_never_equal_integers(filters, payload):
    assert evaluate_filters(filters, payload) is False


def test_ne_treats_true_and_one_as_different():
    assert evaluate_filters({"is_first_donation": {"ne": True}}, {"is_first_donation": 1}) is True
    assert evaluate_filters({"is_first_donation": {"ne": True}}, {"is_first_donation": True}) is False
