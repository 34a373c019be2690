"""Property condition trees used by event goals and funnel steps.

A tree is built from two kinds of node:

* leaf:  ``{"property": "order.total", "operator": "gte", "value": 100}``
* group: ``{"all": [...]}``, ``{"any": [...]}`` or ``{"not": node}``

A bare list is read as ``{"all": [...]}``. Property names are dot paths into
the event's property map (``order.items.0.sku`` indexes into lists too).

Canonical operators and their accepted aliases:

    equals                   eq, =, ==
    not_equals               ne, neq, !=
    greater_than             gt, >
    less_than                lt, <
    greater_than_or_equal    gte, >=
    less_than_or_equal       lte, <=
    contains                 like
    not_contains             not_like
    starts_with
    ends_with
    in
    not_in                   nin
    regex                    matches
    is_null                  not_exists
    is_not_null              exists
    is_empty
    is_not_empty

Malformed trees raise ConditionError; callers decide how to degrade.
"""
import re
from typing import Any, Callable, Dict, Mapping, Optional

from src.analytics_engine.exceptions import ConditionError


_MISSING = object()

OPERATOR_ALIASES: Dict[str, str] = {
    "eq": "equals",
    "=": "equals",
    "==": "equals",
    "ne": "not_equals",
    "neq": "not_equals",
    "!=": "not_equals",
    "gt": "greater_than",
    ">": "greater_than",
    "lt": "less_than",
    "<": "less_than",
    "gte": "greater_than_or_equal",
    ">=": "greater_than_or_equal",
    "lte": "less_than_or_equal",
    "<=": "less_than_or_equal",
    "like": "contains",
    "not_like": "not_contains",
    "nin": "not_in",
    "matches": "regex",
    "exists": "is_not_null",
    "not_exists": "is_null",
}


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Dot-notation lookup into nested dicts and lists."""
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _compare(actual: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    left, right = to_number(actual), to_number(expected)
    if left is not None and right is not None:
        return op(left, right)
    if isinstance(actual, str) and isinstance(expected, str):
        return op(actual, expected)
    return False


def _is_empty(value: Any) -> bool:
    if value is _MISSING or value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return False
    if actual == expected:
        return True
    left, right = to_number(actual), to_number(expected)
    return left is not None and right is not None and left == right


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    return False


def _in(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple, set)):
        raise ConditionError(f"'in' expects a list, got {type(expected).__name__}")
    return actual is not _MISSING and any(_equals(actual, item) for item in expected)


def _regex(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, str):
        raise ConditionError("'regex' expects a pattern string")
    if actual is _MISSING or actual is None:
        return False
    try:
        return re.search(expected, str(actual)) is not None
    except re.error as e:
        raise ConditionError(f"invalid regex {expected!r}: {e}") from e


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, e: not _equals(a, e),
    "greater_than": lambda a, e: _compare(a, e, lambda x, y: x > y),
    "less_than": lambda a, e: _compare(a, e, lambda x, y: x < y),
    "greater_than_or_equal": lambda a, e: _compare(a, e, lambda x, y: x >= y),
    "less_than_or_equal": lambda a, e: _compare(a, e, lambda x, y: x <= y),
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": lambda a, e: isinstance(a, str) and a.startswith(str(e)),
    "ends_with": lambda a, e: isinstance(a, str) and a.endswith(str(e)),
    "in": _in,
    "not_in": lambda a, e: not _in(a, e),
    "regex": _regex,
    "is_null": lambda a, e: a is _MISSING or a is None,
    "is_not_null": lambda a, e: a is not _MISSING and a is not None,
    "is_empty": lambda a, e: _is_empty(a),
    "is_not_empty": lambda a, e: not _is_empty(a),
}


def normalize_operator(operator: Any) -> str:
    if not isinstance(operator, str):
        raise ConditionError(f"operator must be a string, got {operator!r}")
    key = operator.strip().lower()
    key = OPERATOR_ALIASES.get(key, key)
    if key not in OPERATORS:
        raise ConditionError(f"unknown operator {operator!r}")
    return key


def evaluate_rule(rule: Mapping[str, Any], properties: Mapping[str, Any]) -> bool:
    path = rule.get("property")
    if not isinstance(path, str) or not path:
        raise ConditionError(f"rule is missing a property name: {rule!r}")
    operator = normalize_operator(rule.get("operator", "equals"))
    actual = get_path(properties, path, _MISSING)
    return OPERATORS[operator](actual, rule.get("value"))


def evaluate(node: Any, properties: Optional[Mapping[str, Any]]) -> bool:
    """Evaluate a condition tree against a property map."""
    properties = properties or {}

    if node is None:
        return True

    if isinstance(node, list):
        return all(evaluate(child, properties) for child in node)

    if not isinstance(node, Mapping):
        raise ConditionError(f"condition node must be an object or list, got {node!r}")

    if "all" in node:
        children = node["all"]
        if not isinstance(children, list):
            raise ConditionError("'all' expects a list")
        return all(evaluate(child, properties) for child in children)

    if "any" in node:
        children = node["any"]
        if not isinstance(children, list):
            raise ConditionError("'any' expects a list")
        return any(evaluate(child, properties) for child in children)

    if "not" in node:
        return not evaluate(node["not"], properties)

    return evaluate_rule(node, properties)


def match_property_equalities(expected: Any, properties: Optional[Mapping[str, Any]]) -> bool:
    """Flat ``{key: value}`` shorthand, every key must equal exactly."""
    if expected is None:
        return True
    if not isinstance(expected, Mapping):
        raise ConditionError("'property_matches' expects an object")
    properties = properties or {}
    for key, value in expected.items():
        if get_path(properties, key, _MISSING) != value:
            return False
    return True
