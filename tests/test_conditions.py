"""Tests for guard evaluation."""

import pytest
from test_utils import cond

from blockflow.engine import Condition, ConditionEvaluator, RunContext


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


class TestOperators:
    """Each operator against resolved operands."""

    @pytest.mark.parametrize(
        ("left", "operator", "right", "expected"),
        [
            ("$state.count", "==", 5, True),
            ("$state.count", "==", "5", True),
            ("$state.count", "!=", 6, True),
            ("$state.name", "==", "Alice", True),
            ("$state.missing", "==", None, True),
            ("$state.missing", "==", "", False),
            ("$state.count", ">", 3, True),
            ("$state.count", "<", "10", True),
            ("$state.count", ">=", 5, True),
            ("$state.count", "<=", 4, False),
            ("banana", ">", "apple", True),
            ("$state.name", "contains", "lic", True),
            ("$state.user.tags", "contains", "ops", True),
            ("$state.user.tags", "contains", "dev", False),
            ("$state.name", "startsWith", "Al", True),
            ("$state.name", "endsWith", "ce", True),
            ("$state.count", "startsWith", "5", False),
            ("ops", "in", "$state.user.tags", True),
            ("b", "in", "a, b, c", True),
            ("d", "in", "a, b, c", False),
            ("$state.name", "regex", "^A.*e$", True),
            ("$state.count", "regex", "^\\d+$", True),
        ],
    )
    def test_binary(
        self,
        evaluator: ConditionEvaluator,
        context: RunContext,
        left: object,
        operator: str,
        right: object,
        expected: bool,
    ) -> None:
        assert evaluator.evaluate(cond(left, operator, right), context) is expected

    @pytest.mark.parametrize(
        ("left", "operator", "expected"),
        [
            ("$state.missing", "isNull", True),
            ("$state.count", "isNull", False),
            ("$state.missing", "isEmpty", True),
            ("", "isEmpty", True),
            ([], "isEmpty", True),
            ({}, "isEmpty", True),
            (0, "isEmpty", False),
            ("$state.flag", "isFalsy", True),
            (0, "isFalsy", True),
            ("", "isFalsy", True),
            ([], "isFalsy", False),
            ("$state.name", "isFalsy", False),
        ],
    )
    def test_unary(
        self,
        evaluator: ConditionEvaluator,
        context: RunContext,
        left: object,
        operator: str,
        expected: bool,
    ) -> None:
        assert evaluator.evaluate(cond(left, operator), context) is expected

    def test_contains_distinguishes_booleans(
        self, evaluator: ConditionEvaluator, context: RunContext
    ) -> None:
        assert evaluator.evaluate(cond([1, 2], "contains", True), context) is False
        assert evaluator.evaluate(cond([True], "contains", True), context) is True

    def test_invalid_regex_is_false(
        self, evaluator: ConditionEvaluator, context: RunContext
    ) -> None:
        assert evaluator.evaluate(cond("$state.name", "regex", "(["), context) is False

    def test_missing_operand_makes_ordering_false(
        self, evaluator: ConditionEvaluator, context: RunContext
    ) -> None:
        assert evaluator.evaluate(cond("$state.missing", ">", 3), context) is False

    def test_template_operand(self, evaluator: ConditionEvaluator, context: RunContext) -> None:
        condition = cond("{{$state.name}}-{{$state.count}}", "==", "Alice-5")
        assert evaluator.evaluate(condition, context) is True

    def test_unknown_operator_rejected(
        self, evaluator: ConditionEvaluator, context: RunContext
    ) -> None:
        bogus = Condition.model_construct(left=1, operator="~=", right=1)
        with pytest.raises(ValueError, match='Unknown condition operator: "~="'):
            evaluator.evaluate(bogus, context)


class TestEvaluateAll:
    """Guards are the AND of their conditions."""

    def test_absent_guard_is_true(
        self, evaluator: ConditionEvaluator, context: RunContext
    ) -> None:
        assert evaluator.evaluate_all(None, context) is True
        assert evaluator.evaluate_all([], context) is True

    def test_all_must_hold(self, evaluator: ConditionEvaluator, context: RunContext) -> None:
        passing = cond("$state.count", ">", 1)
        failing = cond("$state.name", "==", "Bob")
        assert evaluator.evaluate_all([passing, passing], context) is True
        assert evaluator.evaluate_all([passing, failing], context) is False
