"""Structured condition evaluation for condition steps, step guards and triggers.

Conditions are a mapping of field path to a rule:

    {
        "amount": {"operator": "greater_than", "value": 1000},
        "status": {"operator": "equals", "value": "sent"},
        "tags": {"operator": "contains", "value": "urgent"},
        "currency": "EUR"                     # shorthand for equals
    }

All entries are AND-ed. A missing field fails its entry whatever the
operator.
"""

from typing import Any, Callable, Mapping

from core.constants import ConditionOperator
from core.exceptions import ConfigurationError
from workflow.interpolation import MISSING, VariableInterpolator


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers here")
    return float(value)


def _compare(check: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def _op(actual: Any, expected: Any) -> bool:
        try:
            return check(_as_number(actual), _as_number(expected))
        except (TypeError, ValueError):
            return False
    return _op


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    if isinstance(actual, Mapping):
        return expected in actual
    if actual is None:
        return False
    return str(expected) in str(actual)


def _in(actual: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return actual in expected
    if isinstance(expected, str):
        return str(actual) in expected
    return False


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS.value: lambda actual, expected: actual == expected,
    ConditionOperator.NOT_EQUALS.value: lambda actual, expected: actual != expected,
    ConditionOperator.GREATER_THAN.value: _compare(lambda a, b: a > b),
    ConditionOperator.LESS_THAN.value: _compare(lambda a, b: a < b),
    ConditionOperator.GREATER_THAN_OR_EQUAL.value: _compare(lambda a, b: a >= b),
    ConditionOperator.LESS_THAN_OR_EQUAL.value: _compare(lambda a, b: a <= b),
    ConditionOperator.CONTAINS.value: _contains,
    ConditionOperator.NOT_CONTAINS.value: lambda actual, expected: not _contains(actual, expected),
    ConditionOperator.IN.value: _in,
}


class ConditionEvaluator:
    """Evaluates AND-ed condition mappings against runtime data."""

    @staticmethod
    def normalize(field_path: str, rule: Any) -> tuple[str, Any]:
        """Return ``(operator, expected)`` for one entry, validating the operator."""
        if isinstance(rule, Mapping) and "operator" in rule:
            operator = rule["operator"]
            expected = rule.get("value")
        else:
            operator = ConditionOperator.EQUALS.value
            expected = rule

        if operator not in OPERATORS:
            raise ConfigurationError(
                f"Unsupported condition operator {operator!r} for field {field_path!r}"
            )
        return operator, expected

    @classmethod
    def evaluate(cls, conditions: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
        """Evaluate every entry of ``conditions`` against ``data``.

        Raises:
            ConfigurationError: if any entry uses an unknown operator. All
                entries are validated before any is evaluated, so the
                outcome never depends on entry order.
        """
        if not conditions:
            return True

        rules = [
            (field_path, *cls.normalize(field_path, rule))
            for field_path, rule in conditions.items()
        ]

        for field_path, operator, expected in rules:
            actual = VariableInterpolator.resolve_path(field_path, data)
            if actual is MISSING:
                return False
            if not OPERATORS[operator](actual, expected):
                return False
        return True


def evaluate_conditions(conditions: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    return ConditionEvaluator.evaluate(conditions, data)
