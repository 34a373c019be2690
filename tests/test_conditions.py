"""Tests for property condition trees."""

from __future__ import annotations

import pytest

from src.analytics_engine.exceptions import ConditionError
from src.analytics_engine.services.conditions import (
    evaluate,
    get_path,
    match_property_equalities,
    normalize_operator,
    to_number,
)

ORDER = {
    "plan": "pro",
    "coupon": "",
    "order": {"total": "149.90", "currency": "EUR", "items": [{"sku": "A-1"}, {"sku": "B-2"}]},
    "tags": ["sale", "newsletter"],
}


# ── Paths and numbers ────────────────────────────────────────────


class TestHelpers:
    def test_get_path_walks_dicts_and_lists(self):
        assert get_path(ORDER, "order.items.1.sku") == "B-2"

    def test_get_path_missing_returns_default(self):
        assert get_path(ORDER, "order.shipping.city", "n/a") == "n/a"
        assert get_path(ORDER, "order.items.9.sku") is None

    @pytest.mark.parametrize(
        "value,expected",
        [(3, 3.0), ("2.5", 2.5), (" 7 ", 7.0), ("abc", None), (True, None), (None, None)],
    )
    def test_to_number(self, value, expected):
        assert to_number(value) == expected


# ── Operators ────────────────────────────────────────────────────


class TestOperators:
    @pytest.mark.parametrize(
        "alias,canonical",
        [("eq", "equals"), ("!=", "not_equals"), (">=", "greater_than_or_equal"),
         ("LIKE", "contains"), ("nin", "not_in"), ("exists", "is_not_null")],
    )
    def test_aliases_normalize(self, alias, canonical):
        assert normalize_operator(alias) == canonical

    def test_numeric_string_compares_as_number(self):
        assert evaluate({"property": "order.total", "operator": "gte", "value": 100}, ORDER)
        assert not evaluate({"property": "order.total", "operator": "<", "value": 100}, ORDER)

    def test_equals_coerces_numbers(self):
        assert evaluate({"property": "order.total", "operator": "equals", "value": 149.9}, ORDER)

    def test_default_operator_is_equals(self):
        assert evaluate({"property": "plan", "value": "pro"}, ORDER)

    def test_contains_on_list_and_string(self):
        assert evaluate({"property": "tags", "operator": "contains", "value": "sale"}, ORDER)
        assert evaluate({"property": "plan", "operator": "contains", "value": "r"}, ORDER)

    def test_in_and_not_in(self):
        assert evaluate({"property": "order.currency", "operator": "in", "value": ["EUR", "USD"]}, ORDER)
        assert evaluate({"property": "order.currency", "operator": "not_in", "value": ["JPY"]}, ORDER)

    def test_null_and_empty_checks(self):
        assert evaluate({"property": "missing", "operator": "is_null"}, ORDER)
        assert evaluate({"property": "coupon", "operator": "is_empty"}, ORDER)
        assert evaluate({"property": "plan", "operator": "is_not_empty"}, ORDER)

    def test_missing_property_never_equals(self):
        assert not evaluate({"property": "missing", "operator": "equals", "value": None}, ORDER)

    def test_regex(self):
        assert evaluate({"property": "order.items.0.sku", "operator": "regex", "value": r"^A-\d$"}, ORDER)


# ── Groups ───────────────────────────────────────────────────────


class TestGroups:
    def test_list_means_all(self):
        tree = [
            {"property": "plan", "value": "pro"},
            {"property": "order.currency", "value": "USD"},
        ]
        assert evaluate(tree, ORDER) is False

    def test_any_and_not(self):
        tree = {
            "any": [
                {"property": "plan", "value": "free"},
                {"not": {"property": "order.currency", "value": "USD"}},
            ]
        }
        assert evaluate(tree, ORDER) is True

    def test_none_tree_matches(self):
        assert evaluate(None, ORDER) is True

    def test_property_equalities_shorthand(self):
        assert match_property_equalities({"plan": "pro", "order.currency": "EUR"}, ORDER)
        assert not match_property_equalities({"plan": "basic"}, ORDER)


# ── Malformed trees ──────────────────────────────────────────────


class TestMalformed:
    @pytest.mark.parametrize(
        "tree",
        [
            {"property": "plan", "operator": "sounds_like", "value": "pro"},
            {"operator": "equals", "value": "pro"},
            {"property": "plan", "operator": "regex", "value": "(unclosed"},
            {"property": "plan", "operator": "in", "value": "pro"},
            {"all": "not-a-list"},
            "plan == pro",
        ],
    )
    def test_raises_condition_error(self, tree):
        with pytest.raises(ConditionError):
            evaluate(tree, ORDER)

    def test_property_matches_must_be_object(self):
        with pytest.raises(ConditionError):
            match_property_equalities(["plan"], ORDER)
