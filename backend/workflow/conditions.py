"""Condition evaluation for workflow branch steps."""

from numbers import Real
from typing import Any, Mapping, Optional

from core.constants import ConditionOperator
from core.schemas import Condition, parse_condition
from workflow.interpolation import MISSING, resolve_path


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    return value is MISSING or value is None or value == "" or value == []


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (``1 != True``, ``1 != "1"``)."""
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def evaluate_condition(condition: Optional[Condition | dict], context: Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` against the execution context.

    A missing condition is true. Unknown operators are true. An omitted
    ``value`` only equals a field that is absent from the context.
    """
    condition = parse_condition(condition)
    if condition is None:
        return True

    actual = resolve_path(context or {}, condition.field)
    expected = condition.value if condition.has_value else MISSING
    op = condition.operator

    if op == ConditionOperator.EQUALS:
        return _strict_equals(actual, expected)
    if op == ConditionOperator.NOT_EQUALS:
        return not _strict_equals(actual, expected)
    if op == ConditionOperator.CONTAINS:
        return isinstance(actual, str) and isinstance(expected, str) and expected in actual
    if op == ConditionOperator.NOT_CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected not in actual
        return True
    if op == ConditionOperator.GREATER_THAN:
        return _is_number(actual) and _is_number(expected) and actual > expected
    if op == ConditionOperator.LESS_THAN:
        return _is_number(actual) and _is_number(expected) and actual < expected
    if op == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    return True
