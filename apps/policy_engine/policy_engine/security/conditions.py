from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from policy_engine.security.context import freeze_value
from policy_engine.security.types import Condition, ConditionOperator


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_path(namespace: Mapping[str, Any], path: str) -> Any:
    value: Any = namespace
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return MISSING
    return value


def _compare(operator: ConditionOperator, left: Any, right: Any) -> bool:
    try:
        if operator == ConditionOperator.GT:
            return left > right
        if operator == ConditionOperator.LT:
            return left < right
        if operator == ConditionOperator.GTE:
            return left >= right
        return left <= right
    except TypeError:
        return False


def _member(item: Any, container: Any) -> bool:
    try:
        return item in container
    except TypeError:
        return False


def evaluate_condition(condition: Condition, namespace: Mapping[str, Any]) -> bool:
    actual = freeze_value(resolve_path(namespace, condition.field))
    if condition.operator == ConditionOperator.EXISTS:
        return actual is not MISSING and actual is not None
    if actual is MISSING:
        return False

    expected = freeze_value(condition.value)
    if condition.value_from is not None:
        expected = freeze_value(resolve_path(namespace, condition.value_from))
        if expected is MISSING:
            return False

    operator = condition.operator
    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, str):
            return isinstance(expected, str) and expected in actual
        if isinstance(actual, Iterable):
            return _member(expected, actual)
        return False
    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if isinstance(expected, (str, bytes)) or not isinstance(expected, Iterable):
            return False
        member = _member(actual, expected)
        return member if operator == ConditionOperator.IN else not member
    return _compare(operator, actual, expected)


def conditions_hold(conditions: Iterable[Condition], namespace: Mapping[str, Any]) -> bool:
    """All conditions must hold; an empty list is trivially satisfied."""

    return all(evaluate_condition(condition, namespace) for condition in conditions)
