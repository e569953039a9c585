"""
Guard evaluation for blocks.

A block's guard is the AND of its conditions; an absent or empty guard is true.
Evaluation is total for missing data: unresolved operands are None and simply make
most operators false. Only an unknown operator is rejected, as invalid input.
"""

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from .block import Condition, ConditionOperator
from .context import RunContext
from .resolver import ContextResolver, stringify


def to_number(value: Any) -> float | None:
    """Numeric coercion used by ordering operators; None when not a number."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def as_text(value: Any) -> str:
    """String coercion used by equality and string operators."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return stringify(value)


def is_falsy(value: Any) -> bool:
    """None, False, 0, NaN and the empty string are falsy; containers never are."""
    if value is None or value is False or value == "":
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0 or math.isnan(value)
    return False


def is_empty(value: Any) -> bool:
    """None, "", and empty lists or mappings are empty."""
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, set, Mapping)):
        return len(value) == 0
    return False


def loose_equal(left: Any, right: Any) -> bool:
    """Equality on string forms; None equals only None."""
    if left is right or (type(left) is type(right) and left == right):
        return True
    if left is None or right is None:
        return False
    return as_text(left) == as_text(right)


def compare(left: Any, right: Any) -> int:
    """Numeric ordering when both sides are numeric, string ordering otherwise."""
    num_left, num_right = to_number(left), to_number(right)
    if num_left is not None and num_right is not None:
        return (num_left > num_right) - (num_left < num_right)
    text_left, text_right = as_text(left), as_text(right)
    return (text_left > text_right) - (text_left < text_right)


class ConditionEvaluator:
    """Evaluates guards using a ContextResolver for both operands."""

    def __init__(self, resolver: ContextResolver | None = None) -> None:
        self.resolver = resolver or ContextResolver()

    def evaluate_all(self, conditions: Sequence[Condition] | None, context: RunContext) -> bool:
        """AND of all conditions; True for None or an empty list."""
        if not conditions:
            return True
        return all(self.evaluate(condition, context) for condition in conditions)

    def evaluate(self, condition: Condition, context: RunContext) -> bool:
        """Evaluate one condition.

        Raises:
            ValueError: If the operator is not a known ConditionOperator
        """
        try:
            operator = ConditionOperator(condition.operator)
        except ValueError:
            raise ValueError(f'Unknown condition operator: "{condition.operator}"') from None

        left = self.resolver.resolve_value(condition.left, context)
        right = self.resolver.resolve_value(condition.right, context)
        return self._apply(operator, left, right)

    def _apply(self, operator: ConditionOperator, left: Any, right: Any) -> bool:
        match operator:
            case ConditionOperator.EQUALS:
                return loose_equal(left, right)
            case ConditionOperator.NOT_EQUALS:
                return not loose_equal(left, right)
            case ConditionOperator.LESS_THAN:
                return compare(left, right) < 0
            case ConditionOperator.GREATER_THAN:
                return compare(left, right) > 0
            case ConditionOperator.LESS_OR_EQUAL:
                return compare(left, right) <= 0
            case ConditionOperator.GREATER_OR_EQUAL:
                return compare(left, right) >= 0
            case ConditionOperator.CONTAINS:
                return self._contains(left, right)
            case ConditionOperator.STARTS_WITH:
                return isinstance(left, str) and isinstance(right, str) and left.startswith(right)
            case ConditionOperator.ENDS_WITH:
                return isinstance(left, str) and isinstance(right, str) and left.endswith(right)
            case ConditionOperator.IN:
                return self._is_in(left, right)
            case ConditionOperator.IS_EMPTY:
                return is_empty(left)
            case ConditionOperator.IS_FALSY:
                return is_falsy(left)
            case ConditionOperator.IS_NULL:
                return left is None
            case ConditionOperator.REGEX:
                return self._matches(left, right)

    @staticmethod
    def _contains(left: Any, right: Any) -> bool:
        if isinstance(left, str) and isinstance(right, str):
            return right in left
        if isinstance(left, (list, tuple)):
            return any(
                item == right and isinstance(item, bool) == isinstance(right, bool) for item in left
            )
        return False

    @staticmethod
    def _is_in(left: Any, right: Any) -> bool:
        if isinstance(right, (list, tuple)):
            return any(loose_equal(item, left) for item in right)
        if isinstance(right, str):
            return any(loose_equal(item.strip(), left) for item in right.split(","))
        return False

    @staticmethod
    def _matches(left: Any, right: Any) -> bool:
        if not isinstance(right, str):
            return False
        try:
            return re.search(right, as_text(left)) is not None
        except re.error:
            return False
